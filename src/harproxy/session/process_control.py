"""Tracking and shutdown of the mitmdump process tree.

A process is only ever signalled if its pid still matches the recorded
create_time. mitmdump gets SIGINT first so its addons can flush, then SIGTERM
and SIGKILL, sent to its whole process group on POSIX.
"""

from __future__ import annotations

import os
import signal
import time

import psutil

from harproxy.models import TrackedProcess
from harproxy.session.logging import LogComponent, get_logger

logger = get_logger(LogComponent.PROCESS_CONTROL)


def _get_pgid_safe(pid: int) -> int | None:
    # Windows doesn't have pgid.
    if os.name == "nt":
        return None
    try:
        return os.getpgid(pid)
    except OSError:
        return None


def track_process(pid: int) -> TrackedProcess | None:
    """Record pid, create_time and process group of a freshly spawned process."""
    try:
        proc = psutil.Process(pid)
        pgid = _get_pgid_safe(pid)
        # Never adopt our own process group; signalling it would take us down too.
        if pgid is not None and pgid == _get_pgid_safe(os.getpid()):
            pgid = None
        return TrackedProcess(
            pid=pid,
            create_time=float(proc.create_time()),
            pgid=pgid,
        )
    except (psutil.Error, OSError):
        return None


def validate_tracked(tp: TrackedProcess) -> psutil.Process | None:
    """Look the process up again, or None if the pid now belongs to someone else."""
    if tp.pid is None or tp.create_time is None:
        return None
    try:
        proc = psutil.Process(tp.pid)
        if abs(float(proc.create_time()) - float(tp.create_time)) > 0.001:
            return None
        return proc
    except (psutil.Error, OSError):
        return None


def is_alive(tp: TrackedProcess) -> bool:
    """Return True if the tracked process still runs (zombies count as dead)."""
    proc = validate_tracked(tp)
    if proc is None:
        return False
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except (psutil.Error, OSError):
        return False


def _list_pgid_members(pgid: int) -> list[int]:
    """Non-zombie members of a process group (empty on Windows)."""
    if os.name == "nt":
        return []
    pids: list[int] = []
    for proc in psutil.process_iter(["pid", "status"]):
        try:
            if proc.info.get("status") == psutil.STATUS_ZOMBIE:
                continue
            pid = int(proc.pid)
            if _get_pgid_safe(pid) == pgid:
                pids.append(pid)
        except (psutil.Error, OSError):
            continue
    return pids


def _wait_for_pgid_empty(pgid: int, timeout: float, poll: float = 0.05) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _list_pgid_members(pgid):
            return True
        time.sleep(poll)
    return not _list_pgid_members(pgid)


def _signal_group(pgid: int, sig: signal.Signals) -> None:
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        pass
    except OSError as e:
        logger.warning(f"Couldn't send {sig.name} to process group {pgid}: {e}")


def _terminate_tree(root: psutil.Process, timeout: float) -> None:
    """Terminate a process tree, children first, killing whatever survives the timeout."""
    try:
        children = root.children(recursive=True)
    except psutil.Error:
        children = []

    for proc in [*children, root]:
        try:
            proc.terminate()
        except psutil.Error:
            continue

    _, alive = psutil.wait_procs([*children, root], timeout=timeout)
    if alive:
        for proc in alive:
            try:
                proc.kill()
            except psutil.Error:
                continue
        psutil.wait_procs(alive, timeout=max(0.5, timeout / 2))


def stop_tracked_process(
    tp: TrackedProcess,
    *,
    name: str,
    sigint_timeout: float = 1.0,
    sigterm_timeout: float = 1.5,
    sigkill_timeout: float = 1.0,
) -> None:
    """Stop a tracked process and everything it spawned.

    On Windows there are no process groups: CTRL_BREAK_EVENT is sent first and
    the tree is then terminated.
    """
    if os.name == "nt":
        proc = validate_tracked(tp)
        if proc is None or tp.pid is None:
            return
        logger.debug(f"Stopping {name} pid={tp.pid}")
        try:
            os.kill(tp.pid, signal.CTRL_BREAK_EVENT)  # type: ignore[attr-defined]
        except OSError:
            pass
        time.sleep(0.1)
        _terminate_tree(proc, timeout=sigterm_timeout + sigkill_timeout)
        return

    if tp.pgid is None:
        # Fallback: terminate just the tracked tree.
        proc = validate_tracked(tp)
        if proc is None:
            return
        logger.debug(f"Stopping {name} pid={tp.pid}")
        try:
            proc.send_signal(signal.SIGINT)
            proc.wait(timeout=sigint_timeout)
            return
        except psutil.TimeoutExpired:
            pass
        except psutil.Error:
            return
        _terminate_tree(proc, timeout=sigterm_timeout)
        return

    logger.debug(f"Stopping {name} pid={tp.pid} pgid={tp.pgid}")
    for sig, timeout in (
        (signal.SIGINT, sigint_timeout),
        (signal.SIGTERM, sigterm_timeout),
        (signal.SIGKILL, sigkill_timeout),
    ):
        _signal_group(tp.pgid, sig)
        if _wait_for_pgid_empty(tp.pgid, timeout):
            return
        logger.debug(f"{name} still running after {sig.name}, escalating")

    # Last resort: children that left the group are still ours if the root is valid.
    proc = validate_tracked(tp)
    if proc is not None:
        _terminate_tree(proc, timeout=max(0.2, sigkill_timeout))


def find_listeners_for_port(port: int) -> list[int]:
    """Pids listening on `port`, used to explain why a proxy failed to bind."""
    pids: set[int] = set()
    try:
        for conn in psutil.net_connections(kind="inet"):
            if not conn.laddr or conn.laddr.port != port:
                continue
            if conn.status != psutil.CONN_LISTEN:
                continue
            if conn.pid:
                pids.add(int(conn.pid))
    except (psutil.AccessDenied, PermissionError):
        # macOS needs elevated privileges for system-wide listing; same-user
        # processes can still be inspected one by one.
        for proc in psutil.process_iter(["pid"]):
            try:
                conns = proc.net_connections(kind="inet")
            except (psutil.Error, OSError):
                continue
            for c in conns:
                if c.laddr and c.laddr.port == port and c.status == psutil.CONN_LISTEN:
                    pids.add(int(proc.pid))
                    break
    return sorted(pids)
