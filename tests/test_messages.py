import errno
import io
import os
import syslog
from unittest import mock

import pytest

from machinecheck.messages import MessageLog, SyslogOption


def make_log(opt=SyslogOption.NONE):
    out, err = io.StringIO(), io.StringIO()
    return MessageLog(opt, syslog.LOG_WARNING, out, err), out, err


def test_need_stdout_without_syslog_or_file(tmp_path):
    log, _, _ = make_log()
    assert log.need_stdout()
    log.open_logfile(tmp_path / "log")
    assert not log.need_stdout()
    log.close()


def test_need_stdout_false_with_syslog():
    log, _, _ = make_log(SyslogOption.REMARK)
    assert not log.need_stdout()


def test_error_gets_prefix_and_newline():
    log, out, err = make_log()
    log.error("something failed")
    assert err.getvalue() == "mcelog: something failed\n"
    assert out.getvalue() == ""


def test_error_keeps_single_newline():
    log, _, err = make_log()
    log.error("done\n")
    assert err.getvalue() == "mcelog: done\n"


def test_syserror_appends_strerror():
    log, _, err = make_log()
    log.syserror("Cannot open", errno.ENOENT)
    assert err.getvalue().startswith("mcelog: Cannot open: ")
    assert err.getvalue().rstrip("\n").endswith(": " + os.strerror(errno.ENOENT))


def test_write_returns_length_and_prints():
    log, out, _ = make_log()
    text = "MCA: decoded\n"
    assert log.write(text) == len(text)
    assert out.getvalue() == text


def test_remark_and_general_go_to_stdout_without_syslog():
    log, out, _ = make_log()
    log.remark("a\n")
    log.general("b\n")
    assert out.getvalue() == "a\nb\n"


def test_logfile_receives_output(tmp_path):
    path = tmp_path / "mce.log"
    log, out, err = make_log()
    log.open_logfile(path)
    log.write("first\n")
    log.error("bad")
    log.flush()
    log.close()
    assert path.read_text() == "first\nmcelog: bad\n"
    assert out.getvalue() == "" and err.getvalue() == ""


def test_reopen_keeps_appending(tmp_path):
    path = tmp_path / "mce.log"
    log, _, _ = make_log()
    log.open_logfile(path)
    log.write("one\n")
    log.reopen()
    log.write("two\n")
    log.close()
    assert path.read_text() == "one\ntwo\n"


def test_open_logfile_failure_raises(tmp_path):
    log, _, _ = make_log()
    with pytest.raises(OSError):
        log.open_logfile(tmp_path / "missing" / "log")
    assert log.need_stdout()


def test_write_to_syslog_is_line_buffered():
    with mock.patch("syslog.syslog") as fake, mock.patch("syslog.openlog"):
        log, out, _ = make_log(SyslogOption.LOG)
        log.write("abc")
        assert fake.call_count == 0
        log.write("def\nxyz\n")
        assert fake.call_args_list == [
            mock.call(syslog.LOG_WARNING, "abcdef"),
            mock.call(syslog.LOG_WARNING, "xyz"),
        ]
        assert out.getvalue() == ""


def test_remark_goes_to_syslog_only():
    with mock.patch("syslog.syslog") as fake, mock.patch("syslog.openlog"):
        log, out, _ = make_log(SyslogOption.REMARK)
        log.remark("warning\n")
        assert fake.call_args_list == [mock.call(syslog.LOG_ERR, "warning\n")]
        assert out.getvalue() == ""


def test_error_goes_to_syslog_when_enabled():
    with mock.patch("syslog.syslog") as fake, mock.patch("syslog.openlog"):
        log, _, err = make_log(SyslogOption.ERROR)
        log.error("broken")
        assert fake.call_args_list == [mock.call(syslog.LOG_ERR, "broken")]
        assert err.getvalue() == ""