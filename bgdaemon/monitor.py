"""Restart the current program automatically whenever it fails."""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass

from .daemon import DaemonError, _child_command, _exit_error, _Stop
from .initstatus import Receiver

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05

DEFAULT_SHUTDOWN_TIMEOUT = 10.0
DEFAULT_MIN_BACKOFF = 1.0
DEFAULT_MAX_BACKOFF = 60.0


def is_monitored(env_key) -> bool:
    """Return True if this process runs under a monitor using ``env_key``."""
    return bool(os.environ.get(env_key))


@dataclass
class Options:
    """Settings for :func:`self_monitor`; zero or ``None`` selects the default.

    Times are in seconds.
    """

    shutdown_signal: int | None = signal.SIGINT
    shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT
    min_backoff: float = DEFAULT_MIN_BACKOFF
    max_backoff: float = DEFAULT_MAX_BACKOFF

    def __post_init__(self) -> None:
        if not self.shutdown_signal:
            self.shutdown_signal = signal.SIGINT
        if not self.shutdown_timeout:
            self.shutdown_timeout = DEFAULT_SHUTDOWN_TIMEOUT
        if not self.min_backoff:
            self.min_backoff = DEFAULT_MIN_BACKOFF
        if not self.max_backoff:
            self.max_backoff = DEFAULT_MAX_BACKOFF

    def validate(self) -> None:
        """Raise ValueError if the backoff bounds are inconsistent."""
        if self.max_backoff < self.min_backoff:
            raise ValueError("max backoff timeout is smaller than min backoff timeout")


def backoff_delay(options, attempt) -> float:
    """Seconds to wait before restart number ``attempt``: doubling, capped."""
    try:
        delay = options.min_backoff * (2**attempt)
    except OverflowError:
        return options.max_backoff
    return min(delay, options.max_backoff)


def _is_set(stop) -> bool:
    return stop is not None and stop.is_set()


def _cause_of(stop) -> BaseException:
    cause = getattr(stop, "cause", None)
    if isinstance(cause, BaseException):
        return cause
    return DaemonError("stopped")


def _sleep(stop, delay: float) -> None:
    if stop is None:
        time.sleep(delay)
    else:
        stop.wait(delay)


def _shut_down(proc, options: Options) -> None:
    with contextlib.suppress(OSError):
        proc.send_signal(options.shutdown_signal)
    try:
        proc.wait(timeout=options.shutdown_timeout)
    except subprocess.TimeoutExpired:
        with contextlib.suppress(OSError):
            proc.kill()


def _supervise(proc, child_stop: _Stop, stop, options: Options) -> None:
    while True:
        try:
            proc.wait(timeout=_POLL_INTERVAL)
            break
        except subprocess.TimeoutExpired:
            if _is_set(stop):
                child_stop.cancel(_cause_of(stop))
            if child_stop.is_set():
                _shut_down(proc, options)
                break
    error = _exit_error(proc.wait())
    if error.returncode != 0:
        logger.warning("child has died with status: %s", error)
    child_stop.cancel(error)


def _run_once(env_key, command, options, stop, attempt, workers) -> bool:
    """Run one child; return True if it reported a successful initialization."""
    child_stop = _Stop()
    with Receiver(stop) as receiver:
        env = dict(os.environ)
        env[env_key] = receiver.url
        try:
            proc = subprocess.Popen(command, env=env)
        except OSError as exc:
            logger.warning("child has died with status: %s", exc)
            child_stop.cancel(exc)
        else:
            worker = threading.Thread(
                target=_supervise, args=(proc, child_stop, stop, options), daemon=True
            )
            worker.start()
            workers.append(worker)

        try:
            receiver.wait(child_stop)
        except Exception as exc:
            child_stop.cancel(exc)
            delay = backoff_delay(options, attempt)
            logger.info(
                "waiting for %ss before attempting to restart the child: %s", delay, command
            )
            _sleep(stop, delay)
            return False

    logger.info("child is initialized successfully")
    while not child_stop.wait(_POLL_INTERVAL):
        if _is_set(stop):
            break
    child_stop.cancel(None)
    return True


def self_monitor(env_key, options=None, stop=None) -> None:
    """Run this program again as a child and restart it whenever it fails.

    In the monitored child (``env_key`` set) this returns at once. In the
    monitor it runs until ``stop`` is set, then signals the child to shut
    down, waits for it and raises the cause of ``stop``. The child finds a
    status URL in ``env_key`` to report its initialization to.
    """
    if options is None:
        options = Options()
    options.validate()
    if not env_key:
        raise ValueError("env_key must be non-empty")
    if os.environ.get(env_key):
        return

    workers: list[threading.Thread] = []
    attempt = 0
    try:
        while not _is_set(stop):
            command = _child_command()
            if _run_once(env_key, command, options, stop, attempt, workers):
                attempt = 1
            else:
                attempt += 1
    finally:
        for worker in workers:
            worker.join()
    raise _cause_of(stop)