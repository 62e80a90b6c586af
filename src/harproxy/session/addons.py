"""mitmdump addons loaded into the proxy process.

Each addon contributes its own fragment of the mitmdump command line; the
scripts themselves live in the configured addons directory.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

from harproxy.constants import ADDONS_MANAGER_SCRIPT, HAR_CAPTURE_SCRIPT


class ProxyAddon(Protocol):
    """Anything that contributes arguments to the mitmdump command line."""

    def command_args(self) -> list[str]: ...


class HarCaptureAddon:
    """Records flows into a HAR archive inside the proxy process."""

    def __init__(self, addons_dir: Path) -> None:
        self.script: Path = addons_dir / HAR_CAPTURE_SCRIPT

    def command_args(self) -> list[str]:
        return ["-s", str(self.script)]


class AddonsManagerAddon:
    """Embeds the HTTP control plane used to drive the other addons."""

    def __init__(self, addons_dir: Path, port: int) -> None:
        self.script: Path = addons_dir / ADDONS_MANAGER_SCRIPT
        self.port: int = port

    def command_args(self) -> list[str]:
        return ["-s", str(self.script), "--set", f"addons_management_port={self.port}"]
