"""Bit field decoding helpers and Nehalem specific machine check decoding."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .record import MCI_STATUS_MISCV, CpuType, Mce, extract

_LINE_WIDTH = 75


@dataclass(frozen=True)
class BitField:
    """A field of a register starting at ``start`` whose values name a condition.

    ``size`` is the number of table entries; the field is as wide as needed
    to hold ``size - 1``.
    """

    start: int
    names: Mapping[int, str] = field(default_factory=dict)
    size: int = 0

    def __post_init__(self) -> None:
        if self.size <= 0:
            object.__setattr__(self, "size", max(self.names, default=0) + 1)

    @classmethod
    def single(cls, start: int, text: str) -> BitField:
        """A one bit flag that prints text when set."""
        return cls(start, {1: text}, 2)

    @classmethod
    def reserved(cls, start: int, bits: int) -> BitField:
        """A reserved field of the given width with no known values."""
        return cls(start, {}, 1 << bits)

    @property
    def mask(self) -> int:
        mask = 1
        while mask < self.size - 1:
            mask = (mask << 1) | 1
        return mask

    def decode(self, value: int) -> str | None:
        """Text for this field in value, or None when there is nothing to say."""
        v = (value >> self.start) & self.mask
        text = self.names.get(v) if v < self.size else None
        if text is None:
            return None if v == 0 else f"<{self.start}:{v:x}>"
        return text


@dataclass(frozen=True)
class NumField:
    """A numeric field covering bits start..end, printed when non-zero or forced."""

    start: int
    end: int
    name: str
    hex: bool = False
    force: bool = False

    def decode(self, value: int) -> str | None:
        v = extract(value, self.start, self.end)
        if not v and not self.force:
            return None
        number = f"{v:x}" if self.hex else str(v)
        return f"{self.name}: {number}\n"


def decode_bitfield(value: int, fields: Iterable[BitField]) -> str:
    """Names of the conditions set in value, wrapped to short lines."""
    parts: list[str] = []
    line_len = 0
    delim = ""
    for bitfield in fields:
        text = bitfield.decode(value)
        if text is None:
            continue
        if line_len + len(text) > _LINE_WIDTH:
            delim = "\n"
            line_len = 0
        parts.append(delim + text)
        delim = " "
        line_len += len(text) + 1
    if line_len > 0:
        parts.append("\n")
    return "".join(parts)


def decode_numfield(value: int, fields: Iterable[NumField]) -> str:
    """One line per numeric field that is non-zero or forced."""
    return "".join(text for f in fields if (text := f.decode(value)) is not None)


_S = BitField.single

QPI_STATUS = (
    _S(16, "QPI header had bad parity"),
    _S(17, "QPI Data packet had bad parity"),
    _S(18, "Number of QPI retries exceeded"),
    _S(19, "Received QPI data packet that was poisoned by sender"),
    _S(20, "QPI reserved 20"),
    _S(21, "QPI reserved 21"),
    _S(22, "QPI received unsupported message encoding"),
    _S(23, "QPI credit type is not supported"),
    _S(24, "Sender sent too many QPI flits to the receiver"),
    _S(25, "QPI Sender sent a failed response to receiver"),
    _S(26, "Clock jitter detected in internal QPI clocking"),
)

QPI_MISC = (
    _S(14, "QPI misc reserved 14"),
    _S(15, "QPI misc reserved 15"),
    _S(24, "QPI Interleave/Head Indication Bit (IIB)"),
)

QPI_NUMBERS = (
    NumField(0, 7, "QPI class and opcode of packet with error", hex=True),
    NumField(8, 13, "QPI Request Transaction ID", hex=True),
    NumField(16, 18, "QPI Requestor/Home Node ID (RHNID)", force=True),
    NumField(19, 23, "QPI miscreserved 19-23", hex=True),
)

NHM_MEMORY_STATUS = (
    _S(16, "Memory read ECC error"),
    _S(17, "Memory ECC error occurred during scrub"),
    _S(18, "Memory write parity error"),
    _S(19, "Memory error in half of redundant memory"),
    _S(20, "Memory reserved 20"),
    _S(21, "Memory access out of range"),
    _S(22, "Memory internal RTID invalid"),
    _S(23, "Memory address parity error"),
    _S(24, "Memory byte enable parity error"),
)

NHM_MEMORY_STATUS_NUMBERS = (
    NumField(25, 37, "Memory MISC reserved 25..37", hex=True),
    NumField(38, 52, "Memory corrected error count (CORE_ERR_CNT)", force=True),
    NumField(53, 56, "Memory MISC reserved 53..56", hex=True),
)

NHM_MEMORY_MISC_NUMBERS = (
    NumField(0, 7, "Memory transaction Tracker ID (RTId)", hex=True, force=True),
    NumField(16, 17, "Memory DIMM ID of error", force=True),
    NumField(18, 19, "Memory channel ID of error", force=True),
    NumField(32, 63, "Memory ECC syndrome", hex=True, force=True),
)

INTERNAL_ERRORS = {
    0x0: "No Error",
    0x3: "Reset firmware did not complete",
    0x8: "Received an invalid CMPD",
    0xA: "Invalid Power Management Request",
    0xD: "Invalid S-state transition",
    0x11: "VID controller does not match POC controller selected",
    0x1A: "MSID from POC does not match CPU MSID",
}

INTERNAL_ERROR_STATUS = (BitField(24, INTERNAL_ERRORS),)

INTERNAL_ERROR_NUMBERS = (
    NumField(16, 23, "Internal machine check status reserved 16..23", hex=True),
    NumField(32, 56, "Internal machine check status reserved 32..56", hex=True),
)

# Generic architectural memory controller encoding.
MMM_MNEMONIC = ("GEN", "RD", "WR", "AC", "MS", "RES5", "RES6", "RES7")
MMM_DESC = (
    "Generic undefined request",
    "Memory read error",
    "Memory write error",
    "Address/Command error",
    "Memory scrubbing error",
    "Reserved 5",
    "Reserved 6",
    "Reserved 7",
)


def decode_memory_controller(status: int, bank: int, cputype=CpuType.GENERIC) -> str:
    """Describe an architectural memory controller error code."""
    if status & 0xF == 0xF:
        channel = "unspecified"
    elif cputype in (CpuType.KNIGHTS_LANDING, CpuType.KNIGHTS_MILL):
        # The second memory controller on these parts reports in bank 15.
        channel = str((status & 0xF) + 3 * (bank == 15))
    else:
        channel = str(status & 0xF)
    kind = (status >> 4) & 7
    return (
        f"MEMORY CONTROLLER {MMM_MNEMONIC[kind]}_CHANNEL{channel}_ERR\n"
        f"Transaction: {MMM_DESC[kind]}\n"
    )


def _decode_internal(status: int) -> str:
    return decode_bitfield(status, INTERNAL_ERROR_STATUS) + decode_numfield(
        status, INTERNAL_ERROR_NUMBERS
    )


def nehalem_decode_model(status: int, misc: int) -> str:
    """Model specific details of a Nehalem machine check."""
    mca = status & 0xFFFF
    if mca >> 11 == 1:
        text = decode_bitfield(status, QPI_STATUS)
        if status & MCI_STATUS_MISCV:
            text += decode_numfield(misc, QPI_NUMBERS)
            text += decode_bitfield(misc, QPI_MISC)
        return text
    if mca == 0x0001:
        return _decode_internal(status)
    if mca >> 7 == 1:
        text = decode_bitfield(status, NHM_MEMORY_STATUS)
        text += decode_numfield(status, NHM_MEMORY_STATUS_NUMBERS)
        if status & MCI_STATUS_MISCV:
            text += decode_numfield(misc, NHM_MEMORY_MISC_NUMBERS)
        return text
    return ""


def xeon75xx_decode_model(mce: Mce) -> str:
    """Xeon 75xx details; only internal core errors are known."""
    if mce.status & 0xFFFF == 0x0001:
        return _decode_internal(mce.status)
    return ""


def nehalem_memerr_misc(mce: Mce) -> tuple[int, int] | None:
    """(channel, dimm) of a Nehalem-EP memory error, or None when not reported."""
    if not mce.status & MCI_STATUS_MISCV:
        return None
    return extract(mce.misc, 18, 19), extract(mce.misc, 16, 17)