"""Running user supplied trigger programs as child processes."""

from __future__ import annotations

import itertools
import os
import signal
import subprocess
from collections.abc import Iterable, Mapping
from dataclasses import dataclass


@dataclass
class _Child:
    name: str
    process: subprocess.Popen


class TriggerRunner:
    """Starts trigger programs and keeps track of the running ones."""

    def __init__(self, log, children_max: int = 4, directory=None):
        self.log = log
        self.children_max = children_max
        self.directory = os.fspath(directory) if directory is not None else None
        self._children: list[_Child] = []

    def run(
        self,
        trigger: str,
        argv: Iterable[str | None] | None = None,
        env: Mapping[str, object] | None = None,
        sync: bool = False,
        reporter: str = "",
    ) -> subprocess.Popen | None:
        """Start trigger with argv and env; returns the process or None."""
        self.log.remark(f"Running trigger `{trigger}' (reporter: {reporter})\n")
        if self.children_max > 0 and len(self._children) >= self.children_max:
            self.log.error("Too many trigger children running already\n")
            return None

        args = [trigger]
        if argv is not None:
            args = list(itertools.takewhile(lambda a: a is not None, argv)) or args
        executable = trigger if "/" in trigger else os.path.join(".", trigger)
        environment = {k: str(v) for k, v in (env or {}).items()}
        try:
            process = subprocess.Popen(
                args, executable=executable, env=environment, cwd=self.directory
            )
        except OSError as exc:
            self.log.syserror("Cannot create process for trigger", exc)
            return None

        child = _Child(trigger, process)
        self._children.append(child)
        if sync:
            process.wait()
            self._finish(child)
        return process

    def _finish(self, child: _Child) -> None:
        status = child.process.returncode
        if status > 0:
            self.log.error(f"Trigger `{child.name}' exited with status {status}\n")
        elif status < 0:
            self.log.error(
                f"Trigger `{child.name}' died with signal {signal.strsignal(-status)}\n"
            )
        self._children.remove(child)

    def check(self, name: str) -> bool:
        """True when the trigger can be read and executed."""
        path = os.path.join(self.directory, name) if self.directory else name
        return os.access(path, os.R_OK | os.X_OK)

    def reap(self) -> int:
        """Collect finished children without blocking; returns how many."""
        done = [c for c in self._children if c.process.poll() is not None]
        for child in done:
            self._finish(child)
        return len(done)

    def wait(self) -> None:
        """Block until every running child has finished."""
        for child in list(self._children):
            child.process.wait()
            self._finish(child)

    def running(self) -> int:
        return len(self._children)