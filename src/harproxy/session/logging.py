"""Centralized logging for harproxy sessions (component loggers and CLI formatting)."""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict
from rich.text import Text
from typing_extensions import override

from harproxy.utils import console

ROOT_LOGGER_NAME = "harproxy"


class LogComponent(str, Enum):
    """Where a log originated (used for fine-grained filtering)."""

    SESSION = "session"
    SUPERVISOR = "supervisor"
    PROCESS_CONTROL = "process_control"
    CONTROL_PLANE = "control_plane"
    DRAIN = "drain"
    MITMDUMP = "mitmdump"


_COMPONENT_STYLE: dict[str, str] = {
    LogComponent.SESSION.value: "bright_blue",
    LogComponent.SUPERVISOR.value: "bright_blue",
    LogComponent.PROCESS_CONTROL.value: "bright_blue",
    LogComponent.CONTROL_PLANE.value: "cyan",
    LogComponent.DRAIN.value: "cyan",
    LogComponent.MITMDUMP.value: "yellow",
}

_LEVEL_STYLE: dict[int, str] = {
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}


class _LoggingState(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(arbitrary_types_allowed=True)

    handler: logging.Handler | None = None
    configured: bool = False


_STATE = _LoggingState()


def _now_timestamp(created: float | None = None) -> str:
    t = time.localtime(created if created is not None else time.time())
    return time.strftime("%Y-%m-%d %H:%M:%S", t)


class _ConsoleLogHandler(logging.Handler):
    """Print records as `timestamp | [component] | message` on the rich console."""

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            component = record.name.removeprefix(f"{ROOT_LOGGER_NAME}.")
            prefix_style = _COMPONENT_STYLE.get(component, "bright_blue")
            content = Text(self.format(record))
            if record.levelno in _LEVEL_STYLE:
                content.stylize(_LEVEL_STYLE[record.levelno])

            ts = Text(_now_timestamp(record.created), style="dim")
            sep = Text(" | ")
            prefix = Text(f"[{component}]", style=prefix_style)
            console.print(ts + sep + prefix + sep + content)
        except Exception:
            self.handleError(record)


def configure_logging(level: int = logging.INFO) -> None:
    """Route all harproxy loggers to the console (used by the CLI)."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if _STATE.handler is not None:
        root.removeHandler(_STATE.handler)

    handler = _ConsoleLogHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    root.setLevel(level)

    _STATE.handler = handler
    _STATE.configured = True


def get_logger(component: LogComponent) -> logging.Logger:
    """Get a logger for a component (do not call stdlib logging directly)."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not _STATE.configured and not root.handlers:
        # Library use: leave output decisions to the embedding application.
        root.addHandler(logging.NullHandler())
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.value}")
