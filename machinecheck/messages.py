"""Routing of log, error and decoded output to files, streams and syslog."""

from __future__ import annotations

import enum
import os
import sys
import syslog
from typing import TextIO

_LINE_MAX = 199


class SyslogOption(enum.IntFlag):
    """Which kinds of message go to syslog."""

    NONE = 0
    LOG = 1
    REMARK = 2
    ERROR = 4
    ALL = LOG | REMARK | ERROR


def _strerror(err) -> str:
    if isinstance(err, int):
        return os.strerror(err)
    if isinstance(err, OSError) and err.strerror:
        return err.strerror
    return str(err)


class MessageLog:
    """Message sink that writes to a log file, standard streams or syslog."""

    IDENT = "mcelog"

    def __init__(
        self,
        syslog_opt=SyslogOption.REMARK,
        syslog_level=syslog.LOG_WARNING,
        stdout: TextIO | None = None,
        stderr: TextIO | None = None,
    ):
        self.syslog_opt = SyslogOption(syslog_opt)
        self.syslog_level = syslog_level
        self._stdout = stdout
        self._stderr = stderr
        self._output: TextIO | None = None
        self._output_path: str | None = None
        self._syslog_open = False
        self._line = ""

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def _out(self) -> TextIO:
        if self._output is not None:
            return self._output
        return self._stdout if self._stdout is not None else sys.stdout

    @property
    def _err(self) -> TextIO:
        if self._output is not None:
            return self._output
        return self._stderr if self._stderr is not None else sys.stderr

    def _syslog(self, priority: int, text: str) -> None:
        if not self._syslog_open:
            syslog.openlog(self.IDENT, 0, syslog.LOG_USER)
            self._syslog_open = True
        syslog.syslog(priority, text)

    def _line_syslog(self, text: str) -> None:
        combined = (self._line + text)[:_LINE_MAX]
        *lines, rest = combined.split("\n")
        for line in lines:
            self._syslog(self.syslog_level, line)
        self._line = rest

    def need_stdout(self) -> bool:
        """True when output has nowhere to go but standard output."""
        return self._output is None and self.syslog_opt == SyslogOption.NONE

    def open_logfile(self, path) -> None:
        """Append further output to the file at path; raises OSError."""
        handle = open(path, "a", encoding="utf-8")
        if self._output is not None:
            self._output.close()
        self._output = handle
        self._output_path = os.fspath(path)

    def remark(self, text: str) -> None:
        """Warnings that should reach syslog."""
        if self.syslog_opt & SyslogOption.REMARK:
            self._syslog(syslog.LOG_ERR, text)
        if self._output is not None or not self.syslog_opt & SyslogOption.REMARK:
            self._out.write(text)

    def error(self, text: str) -> None:
        """Errors during operation."""
        if not self.syslog_opt & SyslogOption.ERROR or self._output is not None:
            out = self._err
            out.write(f"{self.IDENT}: {text}")
            if text and not text.endswith("\n"):
                out.write("\n")
        if self.syslog_opt & SyslogOption.ERROR:
            self._syslog(syslog.LOG_ERR, text)

    def syserror(self, text: str, err) -> None:
        """Errors caused by a failed system call; err is an OSError or errno."""
        reason = _strerror(err)
        if not self.syslog_opt & SyslogOption.ERROR or self._output is not None:
            self._err.write(f"{self.IDENT}: {text}: {reason}\n")
        if self.syslog_opt & SyslogOption.ERROR:
            self._syslog(syslog.LOG_ERR, f"{text}: {reason}")

    def write(self, text: str) -> int:
        """Decoded machine check output; returns the length written."""
        if self.syslog_opt & SyslogOption.LOG:
            self._line_syslog(text)
        if not self.syslog_opt & SyslogOption.LOG or self._output is not None:
            self._out.write(text)
        return len(text)

    def general(self, text: str) -> None:
        """Output that should reach both syslog and the normal log."""
        if self.syslog_opt & (SyslogOption.REMARK | SyslogOption.LOG):
            self._line_syslog(text)
        if not self.syslog_opt & SyslogOption.LOG or self._output is not None:
            self._out.write(text)

    def flush(self) -> None:
        self._out.flush()

    def reopen(self) -> None:
        """Reopen the log file, e.g. after log rotation."""
        if self._output_path is None or self._output is None:
            return
        self._output.close()
        self._output = None
        try:
            self.open_logfile(self._output_path)
        except OSError as exc:
            self.syserror(f"Cannot reopen logfile `{self._output_path}'", exc)

    def close(self) -> None:
        if self._output is not None:
            self._output.close()
            self._output = None