"""Machine check records and the bit helpers used to decode them."""

from __future__ import annotations

import enum
from dataclasses import dataclass

# Architectural MCi_STATUS bits.
MCI_STATUS_VAL = 1 << 63
MCI_STATUS_OVER = 1 << 62
MCI_STATUS_UC = 1 << 61
MCI_STATUS_EN = 1 << 60
MCI_STATUS_MISCV = 1 << 59
MCI_STATUS_ADDRV = 1 << 58
MCI_STATUS_PCC = 1 << 57
MCI_STATUS_S = 1 << 56
MCI_STATUS_AR = 1 << 55
MCI_STATUS_FWST = 1 << 37

# Architectural MCG_STATUS bits.
MCG_STATUS_RIPV = 1 << 0
MCG_STATUS_EIPV = 1 << 1
MCG_STATUS_MCIP = 1 << 2
MCG_STATUS_LMCES = 1 << 3

# Architectural MCG_CAP bits.
MCG_TES_P = 1 << 11
MCG_SER_P = 1 << 24

MCE_EXTENDED_BANK = 128
MCE_THERMAL_BANK = MCE_EXTENDED_BANK

# Byte offset of the socket id in a kernel record; shorter records lack it.
SOCKETID_OFFSET = 76


class CpuType(enum.IntEnum):
    """Processor families with model specific decoding, oldest first."""

    GENERIC = 0
    P6OLD = enum.auto()
    CORE2 = enum.auto()
    K8 = enum.auto()
    P4 = enum.auto()
    TULSA = enum.auto()
    DUNNINGTON = enum.auto()
    NEHALEM = enum.auto()
    XEON75XX = enum.auto()
    SANDY_BRIDGE = enum.auto()
    SANDY_BRIDGE_EP = enum.auto()
    IVY_BRIDGE_EPEX = enum.auto()
    HASWELL_EPEX = enum.auto()
    BROADWELL_DE = enum.auto()
    BROADWELL_EPEX = enum.auto()
    KNIGHTS_LANDING = enum.auto()
    KNIGHTS_MILL = enum.auto()
    SKYLAKE_XEON = enum.auto()
    DENVERTON = enum.auto()
    ICELAKE_XEON = enum.auto()
    ICELAKE_DE = enum.auto()
    TREMONT_D = enum.auto()
    SAPPHIRERAPIDS = enum.auto()


@dataclass
class Mce:
    """One machine check event as reported by the kernel."""

    status: int = 0
    misc: int = 0
    addr: int = 0
    mcgstatus: int = 0
    ip: int = 0
    tsc: int = 0
    time: int = 0
    cpuvendor: int = 0
    cpuid: int = 0
    cs: int = 0
    bank: int = 0
    cpu: int = 0
    extcpu: int = 0
    socketid: int = 0
    apicid: int = 0
    mcgcap: int = 0

    @property
    def logical_cpu(self) -> int:
        """The extended CPU number when present, else the short one."""
        return self.extcpu if self.extcpu else self.cpu

    @property
    def uncorrected(self) -> bool:
        return bool(self.status & MCI_STATUS_UC)


def test_prefix(prefix: int, value: int) -> bool:
    """True when the bits of value above bit ``prefix`` equal exactly 1."""
    return value >> prefix == 1


test_prefix.__test__ = False  # keep test collectors away from this helper


def extract(value: int, start: int, end: int) -> int:
    """Return bits start..end (inclusive) of value."""
    return (value >> start) & ((1 << (end - start + 1)) - 1)