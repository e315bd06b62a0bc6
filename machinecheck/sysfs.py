"""Reading and writing single-value sysfs files."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

_READ_LIMIT = 4096
_UNSIGNED = re.compile(r"\s*\+?(\d+)")


def read_field(base, name, log=None) -> str:
    """Return the first line of base/name, or "" when it cannot be read."""
    path = os.path.join(base, name)
    try:
        with open(path, "rb") as handle:
            data = handle.read(_READ_LIMIT)
    except OSError as exc:
        if log is not None:
            log.syserror(f"Cannot read sysfs field {base}/{name}", exc)
        return ""
    return data.decode("utf-8", errors="replace").split("\n", 1)[0]


def read_field_num(base, name, log=None) -> int:
    """Return the unsigned number in base/name, or 0 when there is none."""
    match = _UNSIGNED.match(read_field(base, name, log))
    if match is None:
        if log is not None:
            log.error(f"Cannot parse number in sysfs field {base}/{name}\n")
        return 0
    return int(match.group(1)) & 0xFFFFFFFF


def read_field_map(base, name, mapping: Mapping[str, int], log=None) -> int | None:
    """Map the string in base/name through mapping; None when unknown."""
    value = read_field(base, name, log)
    if value in mapping:
        return mapping[value]
    if log is not None:
        log.error(f"sysfs field {base}/{name} has unknown string value `{value}'\n")
    return None


def sysfs_write(path, text: str) -> int:
    """Write text to an existing sysfs file; returns bytes written."""
    fd = os.open(path, os.O_WRONLY)
    try:
        return os.write(fd, text.encode())
    finally:
        os.close(fd)


def sysfs_available(path, mode: int) -> bool:
    return os.access(path, mode)