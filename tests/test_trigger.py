import io
import os
import stat

import pytest

from machinecheck.messages import MessageLog, SyslogOption
from machinecheck.trigger import TriggerRunner


@pytest.fixture
def log_streams():
    out, err = io.StringIO(), io.StringIO()
    return MessageLog(SyslogOption.NONE, stdout=out, stderr=err), out, err


def make_script(path, body):
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IRUSR)
    return str(path)


def test_sync_run_passes_environment(tmp_path, log_streams):
    log, out, _ = log_streams
    result = tmp_path / "result"
    script = make_script(tmp_path / "t.sh", f'printf "%s" "$MESSAGE" > "{result}"\n')
    runner = TriggerRunner(log)
    runner.run(script, None, {"MESSAGE": "hello"}, True, "test")
    assert result.read_text() == "hello"
    assert runner.running() == 0
    assert f"Running trigger `{script}' (reporter: test)" in out.getvalue()


def test_argv_is_passed(tmp_path, log_streams):
    log, _, _ = log_streams
    result = tmp_path / "result"
    script = make_script(tmp_path / "t.sh", f'printf "%s" "$1" > "{result}"\n')
    runner = TriggerRunner(log)
    runner.run(script, [script, "0x1000", None], {}, True, "page")
    assert runner.running() == 0
    assert result.read_text() == "0x1000"


def test_exit_status_reported(tmp_path, log_streams):
    log, _, err = log_streams
    script = make_script(tmp_path / "fail.sh", "exit 3\n")
    runner = TriggerRunner(log)
    runner.run(script, None, {}, False, "x")
    runner.wait()
    assert runner.running() == 0
    assert f"Trigger `{script}' exited with status 3" in err.getvalue()


def test_successful_child_is_quiet(tmp_path, log_streams):
    log, _, err = log_streams
    script = make_script(tmp_path / "ok.sh", "exit 0\n")
    runner = TriggerRunner(log)
    proc = runner.run(script, None, {}, False, "x")
    proc.wait()
    assert runner.reap() == 1
    assert err.getvalue() == ""


def test_children_max_and_signal(tmp_path, log_streams):
    log, _, err = log_streams
    script = make_script(tmp_path / "slow.sh", "exec sleep 30\n")
    runner = TriggerRunner(log, children_max=1)
    env = {"PATH": os.environ.get("PATH", "/bin:/usr/bin")}
    proc = runner.run(script, None, env, False, "x")
    assert runner.run(script, None, env, False, "x") is None
    assert "Too many trigger children running already" in err.getvalue()
    proc.kill()
    runner.wait()
    assert runner.running() == 0
    assert "died with signal" in err.getvalue()


def test_directory_and_check(tmp_path, log_streams):
    log, _, _ = log_streams
    make_script(tmp_path / "t.sh", "pwd > out\n")
    runner = TriggerRunner(log, directory=tmp_path)
    assert runner.check("t.sh")
    assert not runner.check("missing.sh")
    runner.run("t.sh", None, {}, True, "dir")
    assert (tmp_path / "out").read_text().strip() == os.path.realpath(tmp_path)


def test_missing_program_reports_error(tmp_path, log_streams):
    log, _, err = log_streams
    runner = TriggerRunner(log)
    assert runner.run(str(tmp_path / "nope"), None, {}, False, "x") is None
    assert "Cannot create process for trigger" in err.getvalue()