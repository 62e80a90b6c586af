"""Global constants for harproxy."""

from pathlib import Path

# Supervised proxy process

DEFAULT_EXECUTABLE = "mitmdump"
READINESS_MARKER = "Proxy server listening"
DEFAULT_READINESS_TIMEOUT = 5.0

# Control plane (addons manager embedded in the proxy process)

DEFAULT_CONTROL_HOST = "localhost"
DEFAULT_CONTROL_PORT = 8088
DEFAULT_REQUEST_TIMEOUT = 5.0

# Addon scripts loaded into the proxy process

DEFAULT_ADDONS_DIR = Path.home() / ".harproxy" / "addons"
HAR_CAPTURE_SCRIPT = "har_dump.py"
ADDONS_MANAGER_SCRIPT = "addons_manager.py"
HAR_ADDON_PATH = "har"

# Shutdown escalation (seconds)

DEFAULT_SIGINT_TIMEOUT = 1.0
DEFAULT_SIGTERM_TIMEOUT = 1.5
DEFAULT_SIGKILL_TIMEOUT = 1.0
