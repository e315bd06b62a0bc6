import io
import stat

import pytest

from machinecheck.messages import MessageLog, SyslogOption
from machinecheck.trigger import TriggerRunner
from machinecheck.yellow import YellowTrigger, cpulist


@pytest.fixture
def setup():
    out = io.StringIO()
    log = MessageLog(SyslogOption.NONE, stdout=out, stderr=io.StringIO())
    return TriggerRunner(log), log, out


def test_cpulist_sorted_unique():
    assert cpulist("AFFECTED_CPUS=", [3, 1, 2, 3]) == "AFFECTED_CPUS=1 2 3"


def test_cpulist_empty():
    assert cpulist("AFFECTED_CPUS=", []) == "AFFECTED_CPUS="


def test_logs_message(setup):
    runner, log, out = setup
    yellow = YellowTrigger(runner, log)
    assert yellow.run(2, 1, 1, "Data", "Level-1", 0) is None
    text = out.getvalue()
    assert "CPU 2 on socket 0 has large number of corrected cache errors in Level-1 Data\n" in text
    assert "might lead to uncorrected cache errors soon" in text


def test_logging_disabled(setup):
    runner, log, out = setup
    YellowTrigger(runner, log, log_enabled=False).run(1, 0, 0, "Instruction", "Level-0", -1)
    assert out.getvalue() == ""


def test_inaccessible_trigger(setup, tmp_path):
    runner, log, _ = setup
    with pytest.raises(PermissionError):
        YellowTrigger(runner, log, str(tmp_path / "missing"))


def write_script(tmp_path, result):
    script = tmp_path / "yellow.sh"
    script.write_text(
        "#!/bin/sh\n"
        f'printf "%s|%s|%s|%s|%s" "$CPU" "$LEVEL" "$TYPE" "$AFFECTED_CPUS" "$SOCKETID" > "{result}"\n'
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR)
    return str(script)


def test_trigger_environment(setup, tmp_path):
    runner, log, _ = setup
    result = tmp_path / "result"
    yellow = YellowTrigger(runner, log, write_script(tmp_path, result))
    yellow.run(2, 1, 1, "Data", "Level-1", 0, [2, 0])
    runner.wait()
    assert result.read_text() == "2|1|Data|0 2|0"


def test_trigger_unknown_affected(setup, tmp_path):
    runner, log, _ = setup
    result = tmp_path / "result"
    yellow = YellowTrigger(runner, log, write_script(tmp_path, result), log_enabled=False)
    yellow.run(5, 0, 2, "Generic", "Level-2", -1)
    runner.wait()
    assert result.read_text() == "5|2|Generic|unknown|"