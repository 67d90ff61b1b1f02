"""Background daemonizing, initialization status reporting and self-monitoring restarts."""

__version__ = "0.1.0"

__all__ = ["cli", "daemon", "initstatus", "monitor"]