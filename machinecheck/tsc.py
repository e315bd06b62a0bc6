"""Turning a time stamp counter value into a rough uptime."""

from __future__ import annotations

import os
import re

from .record import CpuType

_U32 = 0xFFFFFFFF
_U64 = 0xFFFFFFFFFFFFFFFF
_FLOAT = re.compile(r"\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_CSTATE = re.compile(r"\s*C\s*([+-]?\d+):")
_USAGE = re.compile(r"usage\[\s*([+-]?\d+)")


def _scale(tsc: int, unit: int, mhz: float) -> tuple[int, int]:
    step = (int(mhz * 1000000) * unit) & _U64
    count = (tsc // step) & _U32
    return count, (tsc - count * step) & _U64


def format_tsc(tsc: int, mhz: float) -> str | None:
    """Format tsc ticks at mhz as days and h:m:s; None when mhz is 0."""
    if mhz == 0.0:
        return None
    tsc &= _U64
    days, tsc = _scale(tsc, 3600 * 24, mhz)
    hours, tsc = _scale(tsc, 3600, mhz)
    mins, tsc = _scale(tsc, 60, mhz)
    secs, tsc = _scale(tsc, 1, mhz)
    return f"[at {mhz:.0f} Mhz {days} days {hours}:{mins}:{secs} uptime (unreliable)]"


def decode_tsc_forced(mhz: float, tsc: int) -> str | None:
    """Format tsc at the given frequency without any reliability checks."""
    return format_tsc(tsc, mhz)


def _cpufreq_mhz(cpu: int, infomhz: float, sysfs: str = "/sys") -> float:
    path = os.path.join(
        sysfs, "devices", "system", "cpu", f"cpu{cpu}", "cpufreq", "cpuinfo_max_freq"
    )
    try:
        with open(path, encoding="utf-8", errors="replace") as handle:
            text = handle.read()
    except OSError:
        # sysfs without cpufreq: trust cpuinfo; no sysfs at all: unknown
        if os.access(os.path.join(sysfs, "devices"), os.F_OK):
            return infomhz
        return 0.0
    match = _FLOAT.match(text)
    khz = float(match.group(1)) if match else 0.0
    return khz / 1000


def _deep_sleep_states(cpu: int, sysfs: str = "/sys", procfs: str = "/proc") -> bool:
    cpuidle = os.path.join(sysfs, "devices", "system", "cpu", f"cpu{cpu}", "cpuidle")
    if os.access(cpuidle, os.X_OK):
        return True
    power = os.path.join(procfs, "acpi", "processor", f"CPU{cpu}", "power")
    try:
        with open(power, encoding="utf-8", errors="replace") as handle:
            for line in handle:
                state = _CSTATE.match(line)
                if not state or int(state.group(1)) <= 1:
                    continue
                pos = line.find("usage")
                if pos < 0:
                    continue
                usage = _USAGE.match(line, pos)
                if usage and int(usage.group(1)) > 0:
                    return True
    except OSError:
        return False
    return False


def _tsc_reliable(cputype, cpunum: int, processor_flags: str | None, is_intel: bool) -> bool:
    if not processor_flags:
        return False
    if "nonstop_tsc" in processor_flags:
        return True
    if "constant_tsc" not in processor_flags:
        return False
    # Frequencies of non Intel TSCs are not reported by the kernel.
    if not is_intel:
        return False
    if _deep_sleep_states(cpunum) and cputype < CpuType.NEHALEM:
        return False
    return True


def decode_tsc_current(
    cpunum: int,
    cputype,
    mhz: float,
    tsc: int,
    processor_flags: str | None = None,
    is_intel: bool = True,
) -> str | None:
    """Format tsc from this machine's CPU; None when the TSC is not trustworthy."""
    if not _tsc_reliable(cputype, cpunum, processor_flags, is_intel):
        return None
    cmhz = _cpufreq_mhz(cpunum, mhz)
    if cmhz != 0.0:
        mhz = cmhz
    return format_tsc(tsc, mhz)