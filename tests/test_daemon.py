import json
import logging
import sys
import textwrap
import threading
import time
from unittest.mock import patch

import pytest

from bgdaemon.daemon import ChildExited, DaemonError, daemonize
from bgdaemon.initstatus import InitStatusError, Receiver

KEY = "BGDAEMON_TEST_ENVKEY"


class _ParentCancelled(Exception):
    pass


@pytest.fixture
def root_handlers():
    root = logging.getLogger()
    saved = list(root.handlers)
    yield
    root.handlers = saved


@pytest.fixture
def parent_env(monkeypatch):
    monkeypatch.delenv(KEY, raising=False)
    return monkeypatch


def _use_script(monkeypatch, tmp_path, body, *args):
    script = tmp_path / "child.py"
    script.write_text(textwrap.dedent(body))
    monkeypatch.setattr(sys, "argv", [str(script), *map(str, args)])


def _wait_for_stop(stop):
    stop.wait(10)
    raise stop.cause


@pytest.mark.parametrize("key,value", [("", "value"), (KEY, ""), ("", "")])
def test_rejects_empty_arguments(key, value):
    with pytest.raises(ValueError):
        daemonize(key, value)


def test_child_branch_starts_session(monkeypatch, root_handlers):
    monkeypatch.setenv(KEY, "anything")
    with patch("os.setsid") as setsid:
        result = daemonize(KEY, "value")
    assert result is False
    setsid.assert_called_once_with()
    assert all(isinstance(h, logging.NullHandler) for h in logging.getLogger().handlers)


def test_child_branch_setsid_failure(monkeypatch, root_handlers):
    monkeypatch.setenv(KEY, "anything")
    with patch("os.setsid", side_effect=PermissionError("denied")):
        with pytest.raises(DaemonError):
            daemonize(KEY, "value")


def test_parent_starts_child_with_limited_env(parent_env, tmp_path):
    out = tmp_path / "out.json"
    parent_env.setenv("BGDAEMON_TEST_MARKER", "1")
    _use_script(
        parent_env,
        tmp_path,
        """
        import json, os, sys
        with open(sys.argv[1] + ".tmp", "w") as f:
            json.dump({"cwd": os.getcwd(), "env": dict(os.environ)}, f)
        os.rename(sys.argv[1] + ".tmp", sys.argv[1])
        """,
        out,
    )
    assert daemonize(KEY, "some-value") is True
    deadline = time.monotonic() + 10
    while not out.exists() and time.monotonic() < deadline:
        time.sleep(0.05)
    data = json.loads(out.read_text())
    assert data["cwd"] == "/"
    assert data["env"][KEY] == "some-value"
    assert "PATH" in data["env"] and "HOME" in data["env"] and "USER" in data["env"]
    assert "BGDAEMON_TEST_MARKER" not in data["env"]


def test_child_exit_code_reaches_check(parent_env, tmp_path):
    _use_script(parent_env, tmp_path, "import sys\nsys.exit(3)\n")
    with pytest.raises(ChildExited) as info:
        daemonize(KEY, "value", _wait_for_stop)
    assert info.value.returncode == 3


def test_child_killed_by_signal(parent_env, tmp_path):
    _use_script(parent_env, tmp_path, "import os, signal\nos.kill(os.getpid(), signal.SIGKILL)\n")
    with pytest.raises(ChildExited) as info:
        daemonize(KEY, "value", _wait_for_stop)
    assert info.value.returncode < 0


def test_child_reports_ready(parent_env, tmp_path):
    _use_script(
        parent_env,
        tmp_path,
        f"""
        import os, time, urllib.request
        request = urllib.request.Request(os.environ["{KEY}"], data=b"", method="POST")
        urllib.request.urlopen(request, timeout=10).read()
        time.sleep(0.5)
        """,
    )
    with Receiver() as receiver:
        assert daemonize(KEY, receiver.url, receiver.wait) is True


def test_child_reports_failure(parent_env, tmp_path):
    _use_script(
        parent_env,
        tmp_path,
        f"""
        import os, time, urllib.request
        request = urllib.request.Request(os.environ["{KEY}"], data=b"boom", method="POST")
        urllib.request.urlopen(request, timeout=10).read()
        time.sleep(5)
        """,
    )
    with Receiver() as receiver:
        with pytest.raises(InitStatusError, match="boom"):
            daemonize(KEY, receiver.url, receiver.wait)


def test_child_dies_before_reporting(parent_env, tmp_path):
    _use_script(parent_env, tmp_path, "import sys\nsys.exit(7)\n")
    with Receiver() as receiver:
        with pytest.raises(ChildExited) as info:
            daemonize(KEY, receiver.url, receiver.wait)
    assert info.value.returncode == 7


def test_parent_stop_cancels_check(parent_env, tmp_path):
    _use_script(parent_env, tmp_path, "import time\ntime.sleep(5)\n")
    stop = threading.Event()
    stop.cause = _ParentCancelled("interrupted")
    stop.set()
    with pytest.raises(_ParentCancelled, match="interrupted"):
        daemonize(KEY, "value", _wait_for_stop, stop)