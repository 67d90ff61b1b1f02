"""Command that runs a service, optionally in the background and self-restarting."""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys

from .daemon import _Stop, daemonize
from .initstatus import Receiver, report
from .monitor import self_monitor

logger = logging.getLogger(__name__)

DAEMONIZE_ENV_KEY = "DAEMONIZE_ENVKEY"
MONITOR_ENV_KEY = "SELFMONITOR_ENVKEY"


def build_parser() -> argparse.ArgumentParser:
    """Return the command-line parser."""
    parser = argparse.ArgumentParser(prog="bgdaemon", description=__doc__)
    parser.add_argument(
        "--background", action="store_true", help="When true, runs in background"
    )
    parser.add_argument(
        "--self-monitor", action="store_true", help="When true, restarts automatically"
    )
    return parser


def _run(args, stop: _Stop) -> int:
    if args.background:
        receiver = Receiver(stop)
        try:
            foreground = daemonize(DAEMONIZE_ENV_KEY, receiver.url, receiver.wait, stop)
        except Exception as exc:
            logger.error("%s", exc)
            return 1
        finally:
            receiver.close()
        if foreground:
            return 0

    if args.self_monitor:
        try:
            self_monitor(MONITOR_ENV_KEY, None, stop)
        except Exception as exc:
            logger.error("%s", exc)
            return 1

    for enabled, key in ((args.background, DAEMONIZE_ENV_KEY), (args.self_monitor, MONITOR_ENV_KEY)):
        if not enabled:
            continue
        try:
            report(os.environ.get(key, ""))
        except OSError as exc:
            logger.error("%s", exc)
            return 1

    stop.wait()
    return 0


def main(argv=None) -> int:
    """Run the command; return the process exit status."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    stop = _Stop()

    def _on_interrupt(signum, frame):
        stop.cancel(InterruptedError("interrupted"))

    previous = signal.signal(signal.SIGINT, _on_interrupt)
    try:
        return _run(args, stop)
    finally:
        signal.signal(signal.SIGINT, previous)


if __name__ == "__main__":
    sys.exit(main())