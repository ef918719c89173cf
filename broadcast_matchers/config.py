from __future__ import annotations

import json
import logging
from json import JSONDecodeError
from pathlib import Path
from typing import Any, Mapping

import attr
from attr import converters, validators

config_file_name = Path(".broadcast_matchers.json")

logger = logging.getLogger("broadcast_matchers.config")


@attr.define
class Config:
    _errors: list[str] = attr.field(factory=list)

    default_count: int = attr.field(
        default=1,
        metadata={
            "description": (
                "How many messages a matcher expects when no count is given. The"
                " default matches a single broadcast."
            )
        },
        converter=int,
        validator=validators.ge(0),
    )
    normalize_payloads: bool = attr.field(
        default=True,
        metadata={
            "description": (
                "Record payloads as JSON data, the way they would go over the wire."
                " When disabled, payloads are recorded as deep copies of the"
                " published objects."
            )
        },
        converter=converters.to_bool,
    )
    list_broadcasts: bool = attr.field(
        default=True,
        metadata={"description": "List the messages broadcast to the channel in failure messages."},
        converter=converters.to_bool,
    )
    max_listed_messages: int = attr.field(
        default=10,
        metadata={"description": "The maximum number of messages to list in a failure message."},
        converter=int,
        validator=validators.ge(0),
    )
    color_diff: bool = attr.field(
        default=False,
        metadata={"description": "Color payload diffs in failure messages."},
        converter=converters.to_bool,
    )

    @property
    def errors(self) -> list[str]:
        return list(self._errors)

    @classmethod
    def get_fields(cls) -> list[str]:
        return [field.name for field in attr.fields(cls) if not field.name.startswith("_")]

    @classmethod
    def create(cls, cwd: Path) -> Config:
        config = Config()
        config.load_file(cwd / config_file_name)
        return config

    def load_file(self, path: Path) -> None:
        if path.exists():
            with open(path) as config_file:
                try:
                    config = json.load(config_file)
                except JSONDecodeError:
                    self.error(f"Warning: Config {path} contains invalid json; ignoring configuration file")
                    return
            if not isinstance(config, dict):
                self.error(f"Warning: Config {path} should contain a json object; ignoring configuration file")
                return
            self.load_mapping(config, source=str(path))

    def load_mapping(self, config: Mapping[str, Any], source: str = "settings") -> None:
        fields = self.get_fields()
        for field in config:
            if field in fields:
                try:
                    setattr(self, field, config[field])
                except (ValueError, TypeError) as e:
                    self.error(f"Warning: {source} contains invalid value for setting: {field}\n{e}")
            else:
                self.error(f"Warning: {source} contains unrecognized setting: {field}")

    def error(self, message: str) -> None:
        self._errors.append(message)
        logger.warning(message)
