"""Commands for the harproxy CLI."""

import logging
import threading
from pathlib import Path
from typing import Annotated

from rich.markup import escape
from typer import Exit, Option, Typer

from harproxy import __version__
from harproxy.errors import ControlPlaneError, HarProxyError
from harproxy.models import CaptureType, Har, ProxySettings
from harproxy.session.client import ControlPlaneClient, HarCaptureManager
from harproxy.session.logging import configure_logging
from harproxy.session.manager import ProxySessionManager
from harproxy.utils import console, progress_spinner

app = Typer(name="harproxy", help="Run mitmdump and collect captured traffic as HAR")


def _write_har(har: Har, output: Path | None) -> None:
    if output is None:
        print(har.to_json())
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(har.to_json(), encoding="utf-8")
    console.print(
        f"[green]✓[/green] Wrote {len(har.entries)} entries to [bold]{output}[/bold]"
    )


@app.command(name="run", help="Start mitmdump, record traffic until Ctrl+C, then write the HAR")
def run(
    port: Annotated[int, Option("--port", "-p", help="Port the proxy listens on")] = 8080,
    output: Annotated[
        Path, Option("--output", "-o", help="Where to write the final HAR")
    ] = Path("capture.har"),
    control_port: Annotated[
        int | None, Option(help="Port of the embedded control plane")
    ] = None,
    timeout: Annotated[
        float | None, Option(help="Seconds to wait for mitmdump to become ready")
    ] = None,
    capture: Annotated[
        list[str] | None,
        Option(help="Capture type to enable (repeatable), e.g. response-content"),
    ] = None,
    verbose: Annotated[bool, Option("--verbose", "-v", help="Show debug logs")] = False,
):
    """Run a proxy session in the foreground."""
    configure_logging(logging.DEBUG if verbose else logging.INFO)

    settings = ProxySettings.from_env()
    if control_port is not None:
        settings.control_port = control_port
    if timeout is not None:
        settings.readiness_timeout = timeout
    if capture:
        try:
            settings.capture_types = [CaptureType.from_string(c) for c in capture]
        except ValueError as e:
            console.print(f"[red]❌ {escape(str(e))}[/red]")
            raise Exit(code=1)

    session = ProxySessionManager(settings)
    started = False
    try:
        try:
            with progress_spinner(
                f"🚀 Starting mitmdump on port {port}...", "✅ Proxy is listening"
            ):
                session.start(port)
        except HarProxyError as e:
            console.print(f"[red]❌ Failed to start proxy: {escape(str(e))}[/red]")
            raise Exit(code=1)
        started = True

        try:
            session.set_har_capture_types(settings.capture_types)
        except ControlPlaneError as e:
            console.print(
                f"[yellow]⚠️  Couldn't configure HAR capture: {escape(str(e))}[/yellow]"
            )

        console.print(f"[cyan]Proxy:[/cyan] http://localhost:{session.get_proxy_port()}")
        console.print(f"[cyan]Control plane:[/cyan] {session.control_client.base_url}")
        console.print("[dim]Press Ctrl+C to stop and write the HAR.[/dim]")

        threading.Event().wait()
    except KeyboardInterrupt:
        console.print()
    finally:
        session.stop()

    if started:
        _write_har(session.get_har(), output)
    else:
        console.print("[yellow]Interrupted before the proxy was ready, no HAR written[/yellow]")


@app.command(name="har", help="Fetch the HAR from an already running proxy")
def har(
    control_port: Annotated[
        int | None, Option(help="Port of the embedded control plane")
    ] = None,
    host: Annotated[str | None, Option(help="Host of the control plane")] = None,
    clean: Annotated[
        bool, Option("--clean", help="Reset the capture after fetching it")
    ] = False,
    output: Annotated[
        Path | None, Option("--output", "-o", help="File to write (default: stdout)")
    ] = None,
):
    """Fetch the current archive from a running control plane."""
    settings = ProxySettings.from_env()
    client = ControlPlaneClient(
        control_port if control_port is not None else settings.control_port,
        host=host if host is not None else settings.control_host,
        timeout=settings.request_timeout,
    )
    try:
        archive = Har.from_json(HarCaptureManager(client).fetch_har(clean))
    except HarProxyError as e:
        console.print(f"[red]❌ {escape(str(e))}[/red]")
        raise Exit(code=1)

    _write_har(archive, output)


@app.command(name="version", help="Show the harproxy version")
def version():
    console.print(f"harproxy {__version__}")
