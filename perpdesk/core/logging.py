from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, is_dataclass
from decimal import Decimal
from typing import Any

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class _FieldEncoder(json.JSONEncoder):
    def default(self, o: Any):  # type: ignore[override]
        if isinstance(o, Decimal):
            return str(o)
        if is_dataclass(o) and not isinstance(o, type):
            return asdict(o)
        try:
            return super().default(o)
        except TypeError:
            return str(o)


def format_value(value: Any) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (dict, list, tuple)) or (is_dataclass(value) and not isinstance(value, type)):
        try:
            return json.dumps(value, ensure_ascii=False, separators=(",", ":"), cls=_FieldEncoder)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


@dataclass
class FieldLogger:
    """Logs ``event key=value ...`` lines through a stdlib logger."""

    name: str = "perpdesk"
    level: int = logging.INFO

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(self.name)
        self._logger.setLevel(self.level)
        if not any(isinstance(h, logging.StreamHandler) for h in self._logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            self._logger.addHandler(handler)
        # avoid duplicates through the root logger
        self._logger.propagate = False

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def child(self, suffix: str) -> "FieldLogger":
        return FieldLogger(name=f"{self.name}.{suffix}", level=self.level)

    def log(self, _level: int, _message: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(_level):
            return
        if fields:
            extras = " ".join(f"{k}={format_value(v)}" for k, v in fields.items())
            _message = f"{_message} {extras}"
        self._logger.log(_level, _message)

    def debug(self, _message: str, **fields: Any) -> None:
        self.log(logging.DEBUG, _message, **fields)

    def info(self, _message: str, **fields: Any) -> None:
        self.log(logging.INFO, _message, **fields)

    def warn(self, _message: str, **fields: Any) -> None:
        self.log(logging.WARNING, _message, **fields)

    def error(self, _message: str, **fields: Any) -> None:
        self.log(logging.ERROR, _message, **fields)

    def exception(self, _message: str, **fields: Any) -> None:
        extras = " ".join(f"{k}={format_value(v)}" for k, v in fields.items())
        self._logger.exception(f"{_message} {extras}".rstrip())
