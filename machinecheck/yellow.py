"""Handling of 'yellow' cache error threshold indications."""

from __future__ import annotations

import errno
from collections.abc import Iterable


def cpulist(prefix: str, cpus: Iterable[int]) -> str:
    """prefix followed by the CPU numbers in ascending order, space separated."""
    return prefix + " ".join(str(cpu) for cpu in sorted(set(cpus)))


class YellowTrigger:
    """Logs and triggers on a large number of corrected cache errors."""

    def __init__(self, runner, log, trigger: str | None = None, log_enabled: bool = True):
        if trigger and not runner.check(trigger):
            raise PermissionError(
                errno.EACCES, "Cannot access cache threshold trigger", trigger
            )
        self.runner = runner
        self.log = log
        self.trigger = trigger
        self.log_enabled = log_enabled

    def run(
        self,
        cpu: int,
        tnum: int,
        lnum: int,
        type_name: str,
        level_name: str,
        socket: int,
        affected_cpus: Iterable[int] | None = None,
    ):
        """Report the indication; affected_cpus is None when unknown."""
        location = f"CPU {cpu} on socket {socket}" if socket >= 0 else f"CPU {cpu}"
        msg = (
            f"{location} has large number of corrected cache errors in "
            f"{level_name} {type_name}"
        )
        if self.log_enabled:
            self.log.remark(msg + "\n")
            self.log.remark(
                "System operating correctly, but might lead to uncorrected cache errors soon\n"
            )
        if not self.trigger:
            return None

        env: dict[str, str] = {}
        if socket >= 0:
            env["SOCKETID"] = str(socket)
        env["MESSAGE"] = msg
        env["CPU"] = str(cpu)
        env["LEVEL"] = str(lnum)
        env["TYPE"] = type_name
        env["AFFECTED_CPUS"] = (
            cpulist("", affected_cpus) if affected_cpus is not None else "unknown"
        )
        return self.runner.run(self.trigger, None, env, False, "yellow")