# bgdaemon

Helpers for long-running programs on POSIX systems, using only the standard
library:

- `bgdaemon.daemon.daemonize` starts another copy of the current program in
  the background. The foreground copy can wait until the background copy
  reports that it has started up.
- `bgdaemon.initstatus` provides `Receiver`, a short-lived HTTP server on
  `127.0.0.1` that accepts one status report, and `report`, which sends that
  report. An empty report means "ready". Any other text is the error message.
- `bgdaemon.monitor.self_monitor` runs the current program as a child process
  and restarts it with exponential backoff whenever it fails.

## Installation

```
pip install bgdaemon
```

## Stop events

Functions that run until told to stop take a `stop` argument. This is a
`threading.Event`, or any object with `is_set()` and `wait(timeout)`. If the
object has a `cause` attribute holding an exception, that exception is used as
the reason for stopping.

## Initialization status

```python
from bgdaemon.initstatus import Receiver, report

with Receiver() as receiver:
    url = receiver.url          # e.g. http://127.0.0.1:54321
    # ... hand `url` to the child process ...
    receiver.wait(timeout=30)   # returns on success, raises otherwise
```

`Receiver.wait(stop=None, timeout=None)` handles outcomes as follows:

- It returns if an empty POST arrives.
- It raises `InitStatusError` carrying the posted text if the POST is not
  empty.
- It raises `ReceiverClosed` if `close()` is called first.
- It raises `TimeoutError` if `timeout` expires.
- It raises the cause of `stop` if `stop` is set.

Only the first outcome counts. After that the server shuts down.

In the child, `report(url, status=None, timeout=None)` posts the status.
Passing `None` means success, and anything else is sent as its text. An empty
`url` does nothing. Loopback addresses bypass any configured proxy. Network
failures are raised as `OSError`.

## Daemonizing

Call `daemonize(env_key, env_value, check=None, stop=None)` early in both the
foreground and the background process, before opening files, databases or
network connections. Both `env_key` and `env_value` must be non-empty,
otherwise `ValueError` is raised.

- **Foreground** (`env_key` unset or empty): the function starts the
  background copy and returns `True`. The copy gets:
  - the same interpreter and arguments;
  - working directory `/`;
  - standard streams on `/dev/null`;
  - only `PATH`, `USER`, `HOME` and `env_key=env_value` in its environment.

  A failure to start raises `DaemonError`.
- **Check**: if `check` is given, the foreground calls it with an event. The
  event is set when the background copy exits or `stop` is set. Its `cause`
  holds either a `ChildExited`, whose `returncode` is the exit status, or the
  cause of `stop`. If `check` raises, the child is killed and the exception
  propagates.
- **Background** (`env_key` set): the function starts a new session, replaces
  the root logger's handlers with a `NullHandler`, and returns `False`.

A common pattern opens a `Receiver` in the foreground and calls
`daemonize(key, receiver.url, receiver.wait)`. The background copy later calls
`report(os.environ[key])` once it is ready.

## Self-monitoring

`self_monitor(env_key, options=None, stop=None)` raises `ValueError` if
`env_key` is empty or the options are inconsistent. If `env_key` is already
set, the process is the monitored child and the call returns at once.
`is_monitored(env_key)` tells the same thing.

Otherwise the calling process becomes the monitor and runs until `stop` is set:

- Each child is started with the same arguments and the full environment. In
  addition, `env_key` is set to the URL of a fresh `Receiver`.
- If a child exits or reports an error before it reports ready, the monitor
  waits before starting the next one. The wait is
  `backoff_delay(options, attempt)`: `min_backoff * 2 ** attempt`, capped at
  `max_backoff`. The attempt count grows with each failure and drops back to 1
  after a child starts successfully.
- When `stop` is set, the monitor:
  1. sends the child `shutdown_signal`;
  2. waits up to `shutdown_timeout` seconds, then kills the child;
  3. raises the cause of `stop`, or `DaemonError` if it has none.

`Options` is a dataclass whose times are in seconds. A zero or `None` value
selects the default:

| Field | Default |
| --- | --- |
| `shutdown_signal` | `signal.SIGINT` |
| `shutdown_timeout` | `10` |
| `min_backoff` | `1` |
| `max_backoff` | `60` |

`Options.validate()` raises `ValueError` if `max_backoff` is smaller than
`min_backoff`.

## Command line

The `bgdaemon` command (also `python -m bgdaemon.cli`) demonstrates the full
flow:

```
bgdaemon --background
bgdaemon --self-monitor
bgdaemon --background --self-monitor
```

- With `--background`, the foreground exits once the background copy reports
  ready. The environment variable used is `DAEMONIZE_ENVKEY`.
- With `--self-monitor`, the program is restarted whenever it fails. The
  environment variable used is `SELFMONITOR_ENVKEY`.

The running instance reports ready to whichever of these is in use, then waits
until it receives `SIGINT`. The exit status is 0 on success and 1 on error.

## What it does not do

The package does not:

- write PID files;
- redirect the daemon's output to log files, since its standard streams go to
  `/dev/null`;
- install service definitions;
- provide a way to stop a running daemon other than sending it a signal.

It needs a POSIX system, because `os.setsid` is used.

## Running the tests

```
pip install -e ".[test]"
pytest
```