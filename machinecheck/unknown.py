"""Trigger for machine checks that could not be classified."""

from __future__ import annotations

import errno

from .record import Mce


def unknown_environment(socket: int, cpu: int, mce: Mce) -> dict[str, str]:
    """Environment handed to the unknown error trigger."""
    location = f"CPU {cpu} on socket {socket}" if socket >= 0 else f"CPU {cpu}"
    env = {"LOCATION": location}
    if socket >= 0:
        env["SOCKETID"] = str(socket)
    env["MESSAGE"] = f"{location} received unknown error"
    env["CPU"] = str(cpu)
    env["STATUS"] = f"{mce.status:x}"
    env["MISC"] = f"{mce.misc:x}"
    env["ADDR"] = f"{mce.addr:x}"
    env["MCGSTATUS"] = f"{mce.mcgstatus:x}"
    env["MCGCAP"] = f"{mce.mcgcap:x}"
    return env


class UnknownTrigger:
    """Runs the configured trigger for unknown errors, if there is one."""

    def __init__(self, runner, trigger: str | None = None):
        if trigger and not runner.check(trigger):
            raise PermissionError(
                errno.EACCES, "Cannot access unknown threshold trigger", trigger
            )
        self.runner = runner
        self.trigger = trigger

    def run(self, socket: int, cpu: int, mce: Mce):
        if not self.trigger:
            return None
        env = unknown_environment(socket, cpu, mce)
        return self.runner.run(self.trigger, None, env, False, "unknown")