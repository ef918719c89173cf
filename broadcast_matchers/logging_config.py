import logging

package_logger_name = "broadcast_matchers"


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logger = logging.getLogger(package_logger_name)
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()
    logger.addHandler(console_handler)
    logger.setLevel(level)
    return logger
