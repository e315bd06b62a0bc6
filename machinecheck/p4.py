"""Decoding of Intel machine checks: architectural fields and model specific details."""

from __future__ import annotations

from dataclasses import dataclass

from .nehalem import decode_memory_controller, nehalem_decode_model, xeon75xx_decode_model
from .record import (
    MCE_THERMAL_BANK,
    MCG_SER_P,
    MCG_STATUS_EIPV,
    MCG_STATUS_LMCES,
    MCG_STATUS_MCIP,
    MCG_STATUS_RIPV,
    MCG_TES_P,
    MCI_STATUS_ADDRV,
    MCI_STATUS_AR,
    MCI_STATUS_EN,
    MCI_STATUS_FWST,
    MCI_STATUS_MISCV,
    MCI_STATUS_OVER,
    MCI_STATUS_PCC,
    MCI_STATUS_S,
    MCI_STATUS_UC,
    MCI_STATUS_VAL,
    SOCKETID_OFFSET,
    CpuType,
    Mce,
    extract,
    test_prefix,
)
from .sandy_bridge import snb_decode_model
from .skylake_xeon import skylake_s_ce_type, skylake_s_decode_model
from .tulsa import tulsa_decode_model

_TT = ("Instruction", "Data", "Generic", "Unknown")
_LL = ("Level-0", "Level-1", "Level-2", "Level-3")
_RRRR = {
    0: "Generic",
    1: "Read",
    2: "Write",
    3: "Data-Read",
    4: "Data-Write",
    5: "Instruction-Fetch",
    6: "Prefetch",
    7: "Eviction",
    8: "Snoop",
}
_PP = (
    "Local-CPU-originated-request",
    "Responed-to-request",
    "Observed-error-as-third-party",
    "Generic",
)
_T = ("Request-did-not-timeout", "Request-timed-out")
_II = ("Memory-access", "Reserved", "IO", "Other-transaction")

_SIMPLE_ERRORS = (
    "No Error",
    "Unclassified",
    "Microcode ROM parity error",
    "External error",
    "FRC error",
    "Internal parity error",
    "SMM Handler Code Access Violation",
)

_P4_MODEL = (
    (16, "FSB address parity"),
    (17, "Response hard fail"),
    (18, "Response parity"),
    (19, "PIC and FSB data parity"),
    (20, "Invalid PIC request(Signature=0xF04H)"),
    (21, "Pad state machine"),
    (22, "Pad strobe glitch"),
    (23, "Pad address glitch"),
)

_TRACKING = {
    1: "green",
    2: "yellow\n"
    "Large number of corrected cache errors. System operating, but might lead\n"
    "to uncorrected errors soon",
    3: "res3",
}

_ARSTATE = ("UCNA", "AR", "SRAO", "SRAR")

_CE_TYPES = (
    "ecc",
    "mirroring with channel failover",
    "mirroring. Primary channel scrubbed successfully",
)


def _name(table, index: int) -> str:
    return table[index] if 0 <= index < len(table) else "UNKNOWN"


@dataclass
class DecodeResult:
    """Decoded text of one machine check and what was learned from it."""

    text: str = ""
    memory_error: bool = False
    unknown: bool = False
    thermal: bool = False
    io_mca: tuple[int, int, int, int] | None = None


class _Decoder:
    def __init__(self, mce: Mce, cputype, socket: int, cpu: int, yellow, result: DecodeResult):
        self.mce = mce
        self.cputype = cputype
        self.socket = socket
        self.cpu = cpu
        self.yellow = yellow
        self.result = result
        self.parts: list[str] = []

    def out(self, text: str) -> None:
        self.parts.append(text)

    def _yellow(self, tnum: int, lnum: int, type_name: str, level_name: str) -> None:
        if self.yellow is not None:
            self.yellow.run(self.cpu, tnum, lnum, type_name, level_name, self.socket, None)

    def decode_mca(self, status: int, misc: int, track: int, bank: int) -> bool:
        """Decode the MCA error code; True when the error is unclassified."""
        mca = status & 0xFFFF
        if mca & (1 << 12):
            self.out("corrected filtering (some unreported errors in same region)\n")
            mca &= ~(1 << 12)

        if mca < len(_SIMPLE_ERRORS):
            self.out(f"{_SIMPLE_ERRORS[mca]}\n")
            return False

        if mca >> 2 == 3:
            levelnum = mca & 3
            level = _name(_LL, levelnum)
            self.out(f"{level} Generic cache hierarchy error\n")
            if track == 2:
                self._yellow(-1, levelnum, "unknown", level)
        elif test_prefix(4, mca):
            typenum = (mca & 0xC) >> 2
            levelnum = mca & 0x3
            type_name = _name(_TT, typenum)
            level = _name(_LL, levelnum)
            self.out(f"{type_name} TLB {level} Error\n")
            if track == 2:
                self._yellow(typenum, levelnum, type_name, level)
        elif test_prefix(8, mca):
            typenum = (mca & 0xC) >> 2
            levelnum = (mca & 0x3) + 1
            type_name = _name(_TT, typenum)
            level = _name(_LL, levelnum)
            rrrr = _RRRR.get((mca & 0xF0) >> 4, "UNKNOWN")
            self.out(f"{type_name} CACHE {level} {rrrr} Error\n")
            if track == 2:
                self._yellow(typenum, levelnum, type_name, level)
        elif test_prefix(9, mca) and extract(mca, 7, 8) == 1:
            self.out("Memory as cache: ")
            self.out(decode_memory_controller(mca, bank, self.cputype))
        elif test_prefix(10, mca):
            if mca == 0x400:
                self.out("Internal Timer error\n")
            else:
                self.out(f"Internal unclassified error: {mca & 0xFFFF:x}\n")
            return True
        elif test_prefix(11, mca):
            level = _name(_LL, mca & 0x3)
            pp = _name(_PP, (mca & 0x600) >> 9)
            rrrr = _RRRR.get((mca & 0xF0) >> 4, "UNKNOWN")
            ii = _name(_II, (mca & 0xC) >> 2)
            timeout = _name(_T, (mca & 0x100) >> 8)
            self.out(
                f"BUS error: {self.socket} {self.cpu} {level} {pp} {rrrr} {ii} {timeout}\n"
            )
            # IO MCA: MISC points at the PCIe root port that reported the error.
            if status & MCI_STATUS_MISCV and status & 0xEFFF == 0x0E0B:
                seg = extract(misc, 32, 39)
                bus = extract(misc, 24, 31)
                dev = extract(misc, 19, 23)
                fn = extract(misc, 16, 18)
                self.out(f"IO MCA reported by root port {seg:x}:{bus:02x}:{dev:02x}.{fn:x}\n")
                self.result.io_mca = (seg, bus, dev, fn)
        elif test_prefix(7, mca):
            self.out(decode_memory_controller(mca, bank, self.cputype))
            self.result.memory_error = True
        else:
            self.out(f"Unknown Error {mca:x}\n")
            return True
        return False

    def check_for_mirror(self, bank: int, status: int, misc: int) -> int:
        if self.cputype == CpuType.SKYLAKE_XEON:
            return skylake_s_ce_type(bank, status, misc)
        return 0

    def decode_mci(self, status: int, misc: int, mcgcap: int, bank: int) -> bool:
        self.out("MCi status:\n")
        if not status & MCI_STATUS_VAL:
            self.out("Machine check not valid\n")
        if status & MCI_STATUS_OVER:
            self.out("Error overflow\n")
        if status & MCI_STATUS_UC:
            self.out("Uncorrected error\n")
        else:
            kind = self.check_for_mirror(bank, status, misc)
            if kind:
                self.out(f"Corrected error by {_CE_TYPES[kind]}\n")
            else:
                self.out("Corrected error\n")
        if status & MCI_STATUS_EN:
            self.out("Error enabled\n")
        if status & MCI_STATUS_MISCV:
            self.out("MCi_MISC register valid\n")
        if status & MCI_STATUS_ADDRV:
            self.out("MCi_ADDR register valid\n")
        if status & MCI_STATUS_PCC:
            self.out("Processor context corrupt\n")
        if status & (MCI_STATUS_S | MCI_STATUS_AR):
            self.out(f"{_ARSTATE[(status >> 55) & 3]}\n")
        if mcgcap & MCG_SER_P and status & MCI_STATUS_FWST:
            self.out("Firmware may have updated this error\n")

        track = 0
        if (mcgcap == 0 or mcgcap & MCG_TES_P) and not status & MCI_STATUS_UC:
            track = (status >> 53) & 3
            if track:
                self.out(f"Threshold based error status: {_TRACKING[track]}\n")
        self.out("MCA: ")
        return self.decode_mca(status, misc, track, bank)

    def decode_mcg(self, mcgstatus: int) -> None:
        text = "MCG status:"
        for bit, name in (
            (MCG_STATUS_RIPV, "RIPV "),
            (MCG_STATUS_EIPV, "EIPV "),
            (MCG_STATUS_MCIP, "MCIP "),
            (MCG_STATUS_LMCES, "LMCE "),
        ):
            if mcgstatus & bit:
                text += name
        self.out(text + "\n")

    def decode_thermal(self) -> None:
        if self.mce.status & 1:
            self.out(
                f"Processor {self.cpu} heated above trip temperature. Throttling enabled.\n"
            )
            self.out("Please check your system cooling. Performance will be impacted\n")
        else:
            self.out(f"Processor {self.cpu} below trip temperature. Throttling disabled\n")


def _p4_decode_model(model: int) -> str:
    text = "Model:"
    for bit, name in _P4_MODEL:
        if model & (1 << bit):
            text += f"{name}\n"
    return text + "\n"


def _model_specific(mce: Mce, cputype) -> str:
    if cputype == CpuType.NEHALEM:
        return nehalem_decode_model(mce.status, mce.misc)
    if cputype == CpuType.TULSA:
        return tulsa_decode_model(mce.status, mce.misc)
    if cputype == CpuType.XEON75XX:
        return xeon75xx_decode_model(mce)
    if cputype in (CpuType.SANDY_BRIDGE, CpuType.SANDY_BRIDGE_EP):
        return snb_decode_model(cputype, mce.bank, mce.status, mce.misc)
    if cputype == CpuType.SKYLAKE_XEON:
        return skylake_s_decode_model(cputype, mce.bank, mce.status, mce.misc)
    return ""


def decode_intel_mc(mce: Mce, cputype, size: int, yellow=None, unknown=None) -> DecodeResult:
    """Decode an Intel machine check record of size bytes.

    yellow and unknown are optional trigger objects run for cache threshold
    indications and unclassified errors.
    """
    socket = mce.socketid if size > SOCKETID_OFFSET else -1
    cpu = mce.logical_cpu
    result = DecodeResult()
    decoder = _Decoder(mce, cputype, socket, cpu, yellow, result)

    if mce.bank == MCE_THERMAL_BANK:
        decoder.decode_thermal()
        result.thermal = True
        result.text = "".join(decoder.parts)
        if unknown is not None:
            unknown.run(socket, cpu, mce)
        return result

    decoder.decode_mcg(mce.mcgstatus)
    if decoder.decode_mci(mce.status, mce.misc, mce.mcgcap, mce.bank):
        result.unknown = True
        if unknown is not None:
            unknown.run(socket, cpu, mce)

    if test_prefix(11, mce.status & 0xFFFF) and cputype in (CpuType.TULSA, CpuType.P4):
        decoder.out(_p4_decode_model(mce.status & 0xFFFF0000))

    decoder.out(_model_specific(mce, cputype))
    result.text = "".join(decoder.parts)
    return result


def intel_bank_name(num: int) -> str:
    return f"BANK {num}"