"""Run the current program again as a background daemon."""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import sys
import threading

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


class DaemonError(Exception):
    """Raised when the background process cannot be started or set up."""


class ChildExited(DaemonError):
    """The background process ended; ``returncode`` is its exit status."""

    def __init__(self, message: str, returncode: int):
        super().__init__(message)
        self.returncode = returncode


class _Stop(threading.Event):
    """An event that records why it was set; only the first cause counts."""

    def __init__(self):
        super().__init__()
        self.cause = None
        self._cancel_lock = threading.Lock()

    def cancel(self, cause) -> None:
        with self._cancel_lock:
            if self.is_set():
                return
            self.cause = cause
            self.set()


def _exit_error(returncode: int) -> ChildExited:
    if returncode == 0:
        return ChildExited("child exited successfully with exit code 0", returncode)
    if returncode < 0:
        return ChildExited("child is terminated by a signal", returncode)
    return ChildExited(f"child exited with exit code {returncode}", returncode)


def _started_as_module(orig: list[str], argv: list[str]) -> bool:
    start = len(orig) - len(argv)
    if start < 1 or start >= len(orig):
        return False
    if orig[start - 1] == "-m":
        return True
    return orig[start].startswith("-m") and len(orig[start]) > 2


def _child_command() -> list[str]:
    orig = list(getattr(sys, "orig_argv", []) or [sys.executable, *sys.argv])
    argv = list(sys.argv)
    script = argv[0] if argv else ""
    if argv and _started_as_module(orig, argv):
        return [sys.executable, *orig[1:]]
    if script and script != "-c" and os.path.isfile(script):
        return [sys.executable, os.path.abspath(script), *argv[1:]]
    return [sys.executable, *orig[1:]]


def _watch(proc: subprocess.Popen, child_stop: _Stop, parent_stop) -> None:
    while not child_stop.is_set():
        try:
            proc.wait(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if parent_stop is not None and parent_stop.is_set():
                cause = getattr(parent_stop, "cause", None)
                child_stop.cancel(cause if isinstance(cause, BaseException) else DaemonError("stopped"))
    child_stop.cancel(_exit_error(proc.wait()))


def _daemonize_parent(env_key: str, env_value: str, check, stop) -> None:
    env = {
        "PATH": os.environ.get("PATH", ""),
        "USER": os.environ.get("USER", ""),
        "HOME": os.environ.get("HOME", ""),
        env_key: env_value,
    }
    try:
        proc = subprocess.Popen(
            _child_command(),
            cwd="/",
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as exc:
        raise DaemonError(f"failed to start process: {exc}") from exc

    child_stop = _Stop()
    threading.Thread(target=_watch, args=(proc, child_stop, stop), daemon=True).start()
    try:
        if check is not None:
            try:
                check(child_stop)
            except Exception as exc:
                logger.warning("could not initialize the background process: %s", exc)
                with contextlib.suppress(OSError):
                    proc.kill()
                raise
            logger.info("background process is initialized successfully")
    finally:
        child_stop.cancel(None)


def _daemonize_child() -> None:
    try:
        os.setsid()
    except OSError as exc:
        raise DaemonError(f"could not set session id: {exc}") from exc
    logging.getLogger().handlers = [logging.NullHandler()]


def daemonize(env_key, env_value, check=None, stop=None) -> bool:
    """Start this program again in the background; return True in the foreground.

    Must be called early in both processes. The foreground process has
    ``env_key`` unset; it starts the background copy with the same arguments,
    a minimal environment (PATH, USER, HOME and ``env_key=env_value``),
    ``/dev/null`` for standard streams and ``/`` as working directory.

    ``check``, if given, is called in the foreground with an event that is set
    (its ``cause`` holding a :class:`ChildExited` or the cause of ``stop``)
    when the background process dies or ``stop`` is set. If ``check`` raises,
    the child is killed and the error propagates.

    In the background process a new session is started, logging output is
    discarded, and False is returned.
    """
    if not env_key or not env_value:
        raise ValueError("env_key and env_value must be non-empty")
    if not os.environ.get(env_key):
        _daemonize_parent(env_key, env_value, check, stop)
        return True
    _daemonize_child()
    return False