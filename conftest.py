pytest_plugins = ("broadcast_matchers.pytest_plugin",)
