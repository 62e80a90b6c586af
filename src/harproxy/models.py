"""Centralized Pydantic models, enums, and type aliases for harproxy."""

from __future__ import annotations

import json
import os
import shlex
from enum import Enum
from pathlib import Path
from typing import Any, ClassVar, TypeAlias

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, JsonValue, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from harproxy import __version__
from harproxy.constants import (
    DEFAULT_ADDONS_DIR,
    DEFAULT_CONTROL_HOST,
    DEFAULT_CONTROL_PORT,
    DEFAULT_EXECUTABLE,
    DEFAULT_READINESS_TIMEOUT,
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_SIGINT_TIMEOUT,
    DEFAULT_SIGKILL_TIMEOUT,
    DEFAULT_SIGTERM_TIMEOUT,
    READINESS_MARKER,
)
from harproxy.errors import HarDeserializationError


# === Type Aliases ===

JsonObject: TypeAlias = dict[str, JsonValue]


# === Enums ===


class SessionState(str, Enum):
    """Lifecycle state of a proxy session."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


class CaptureType(str, Enum):
    """Parts of the traffic recorded by the HAR capture filter."""

    REQUEST_HEADERS = "REQUEST_HEADERS"
    REQUEST_COOKIES = "REQUEST_COOKIES"
    REQUEST_CONTENT = "REQUEST_CONTENT"
    REQUEST_BINARY_CONTENT = "REQUEST_BINARY_CONTENT"
    RESPONSE_HEADERS = "RESPONSE_HEADERS"
    RESPONSE_COOKIES = "RESPONSE_COOKIES"
    RESPONSE_CONTENT = "RESPONSE_CONTENT"
    RESPONSE_BINARY_CONTENT = "RESPONSE_BINARY_CONTENT"

    @classmethod
    def from_string(cls, value: str) -> CaptureType:
        try:
            return cls(value.upper().replace("-", "_"))
        except ValueError:
            raise ValueError(f"Invalid capture type: {value}")


DEFAULT_CAPTURE_TYPES: tuple[CaptureType, ...] = (
    CaptureType.REQUEST_HEADERS,
    CaptureType.REQUEST_COOKIES,
    CaptureType.REQUEST_CONTENT,
    CaptureType.RESPONSE_HEADERS,
    CaptureType.RESPONSE_COOKIES,
    CaptureType.RESPONSE_CONTENT,
)


# === Process Models ===


class TrackedProcess(BaseModel):
    """A process we started and are allowed to manage.

    create_time protects against PID reuse. pgid enables POSIX process-group shutdown
    even if the original PID has already exited (mitmdump may spawn helpers).
    """

    pid: int | None = None
    create_time: float | None = None
    pgid: int | None = None

    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=True)


# === HAR Models ===


class _HarModel(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class HarCreator(_HarModel):
    """Application that produced the archive."""

    name: str = "harproxy"
    version: str = __version__
    comment: str | None = None


class HarPage(_HarModel):
    """A page grouping entries; unknown fields are kept as-is."""

    id: str
    title: str = ""
    started_date_time: str | None = None
    page_timings: JsonObject = Field(default_factory=dict)
    comment: str | None = None


class HarEntry(_HarModel):
    """A single captured request/response pair.

    Only the fields harproxy looks at are typed; everything else is preserved.
    """

    pageref: str | None = None
    started_date_time: str | None = None
    time: float = 0
    request: JsonObject = Field(default_factory=dict)
    response: JsonObject = Field(default_factory=dict)
    comment: str | None = None


class HarLog(_HarModel):
    version: str = "1.2"
    creator: HarCreator = Field(default_factory=HarCreator)
    browser: HarCreator | None = None
    pages: list[HarPage] = Field(default_factory=list)
    entries: list[HarEntry] = Field(default_factory=list)
    comment: str | None = None


class Har(BaseModel):
    """HTTP Archive document captured by the proxy."""

    log: HarLog = Field(default_factory=HarLog)

    @model_validator(mode="before")
    @classmethod
    def _wrap_bare_log(cls, data: Any) -> Any:  # pyright: ignore[reportExplicitAny]
        # Some addon versions return the log object without the top-level wrapper.
        if isinstance(data, dict) and "log" not in data and "entries" in data:
            return {"log": data}
        return data

    @classmethod
    def from_json(cls, payload: bytes | str) -> Har:
        """Parse a HAR document, raising HarDeserializationError on bad input."""
        try:
            return cls.model_validate(json.loads(payload))
        except (ValueError, ValidationError) as e:
            raise HarDeserializationError(f"Couldn't read HAR file: {e}") from e

    def to_json(self, indent: int | None = 2) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)

    @property
    def entries(self) -> list[HarEntry]:
        return self.log.entries


# === Configuration ===


class ProxySettings(BaseModel):
    """Complete configuration for a proxy session.

    This is the single source of truth for session defaults.
    """

    executable: list[str] = Field(default_factory=lambda: [DEFAULT_EXECUTABLE])
    control_host: str = DEFAULT_CONTROL_HOST
    control_port: int = DEFAULT_CONTROL_PORT
    addons_dir: Path = DEFAULT_ADDONS_DIR
    readiness_marker: str = READINESS_MARKER
    readiness_timeout: float = DEFAULT_READINESS_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    capture_types: list[CaptureType] = Field(
        default_factory=lambda: list(DEFAULT_CAPTURE_TYPES)
    )
    sigint_timeout: float = DEFAULT_SIGINT_TIMEOUT
    sigterm_timeout: float = DEFAULT_SIGTERM_TIMEOUT
    sigkill_timeout: float = DEFAULT_SIGKILL_TIMEOUT

    @classmethod
    def from_env(cls, dotenv_path: Path | None = None) -> ProxySettings:
        """Build settings from HARPROXY_* environment variables (and an optional .env)."""
        if dotenv_path is not None:
            load_dotenv(dotenv_path)
        else:
            load_dotenv()

        overrides: dict[str, Any] = {}  # pyright: ignore[reportExplicitAny]
        if executable := os.environ.get("HARPROXY_MITMDUMP"):
            overrides["executable"] = shlex.split(executable)
        if host := os.environ.get("HARPROXY_CONTROL_HOST"):
            overrides["control_host"] = host
        if port := os.environ.get("HARPROXY_CONTROL_PORT"):
            overrides["control_port"] = port
        if addons_dir := os.environ.get("HARPROXY_ADDONS_DIR"):
            overrides["addons_dir"] = Path(addons_dir)
        if timeout := os.environ.get("HARPROXY_READINESS_TIMEOUT"):
            overrides["readiness_timeout"] = timeout
        if timeout := os.environ.get("HARPROXY_REQUEST_TIMEOUT"):
            overrides["request_timeout"] = timeout
        return cls.model_validate(overrides)
