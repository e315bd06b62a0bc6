"""Decoding of Xeon MP 7100 series (Tulsa) specific machine check details."""

from __future__ import annotations

from .nehalem import BitField, NumField, decode_bitfield, decode_numfield
from .record import MCI_STATUS_MISCV

_S = BitField.single

CORR_NUMBERS = (NumField(32, 39, "Corrected events"),)

ECC_NUMBERS = (NumField(44, 51, "ECC syndrome", hex=True),)

TLS_BUS_STATUS = (
    _S(16, "Parity error detected during FSB request phase"),
    _S(17, "Partity error detected on Core 0 request's address field"),
    _S(18, "Partity error detected on Core 1 request's address field"),
    BitField.reserved(19, 1),
    _S(20, "Parity error on FSB response field detected"),
    _S(21, "FSB data parity error on inbound date detected"),
    _S(22, "Data parity error on data received from Core 0 detected"),
    _S(23, "Data parity error on data received from Core 1 detected"),
    _S(24, "Detected an Enhanced Defer parity error phase A or phase B"),
    _S(25, "Data ECC event to error on inbound data correctable or uncorrectable"),
    _S(26, "Pad logic detected a data strobe glitch or sequencing error"),
    _S(27, "Pad logic detected a request strobe glitch or sequencing error"),
    BitField.reserved(28, 3),
    BitField.reserved(31, 1),
)

TLS_FRONT_ERROR = {
    0x1: "Inclusion error from core 0",
    0x2: "Inclusion error from core 1",
    0x3: "Write Exclusive error from core 0",
    0x4: "Write Exclusive error from core 1",
    0x5: "Inclusion error from FSB",
    0x6: "SNP stall error from FSB",
    0x7: "Write stall error from FSB",
    0x8: "FSB Arbiter Timeout error",
    0x9: "CBC OOD Queue Underflow/overflow",
}

TLS_INT_ERROR = {
    0x1: "Enhanced Intel SpeedStep Technology TM1-TM2 Error",
    0x2: "Internal timeout error",
    0x3: "Internal timeout error",
    0x4: "Intel Cache Safe Technology Queue full error\n"
    "or disabled ways in a set overflow",
}

TLS_INT_STATUS = (BitField(8, TLS_INT_ERROR, 0xF),)

TLS_FRONT_STATUS = (BitField(0, TLS_FRONT_ERROR, 0xF),)

TLS_CECC = (
    _S(0, "Correctable ECC event on outgoing FSB data"),
    _S(1, "Correctable ECC event on outgoing core 0 data"),
    _S(2, "Correctable ECC event on outgoing core 1 data"),
)

TLS_UECC = (
    _S(0, "Uncorrectable ECC event on outgoing FSB data"),
    _S(1, "Uncorrectable ECC event on outgoing core 0 data"),
    _S(2, "Uncorrectable ECC event on outgoing core 1 data"),
)


def _decode_internal(status: int) -> str:
    mca = (status >> 16) & 0xFFFF
    if mca & 0xFFF0 == 0:
        return decode_bitfield(mca, TLS_FRONT_STATUS)
    if mca & 0xF0FF == 0:
        return decode_bitfield(mca, TLS_INT_STATUS)
    if mca & 0xFFF0 == 0xC000:
        return decode_bitfield(mca, TLS_CECC)
    if mca & 0xFFF0 == 0xE000:
        return decode_bitfield(mca, TLS_UECC)
    return ""


def tulsa_decode_model(status: int, misc: int) -> str:
    """Model specific details of a Tulsa machine check."""
    text = decode_numfield(status, CORR_NUMBERS)
    if status & (1 << 52):
        text += decode_numfield(status, ECC_NUMBERS)
    # The MISC register layout is undocumented; show it raw.
    if status & MCI_STATUS_MISCV:
        text += f"MISC format {(status >> 40) & 3:x} value {misc:x}\n"
    code = status & 0xFFFF
    if code == 0xE0F:
        text += decode_bitfield(status, TLS_BUS_STATUS)
    elif code == 1 << 10:
        text += _decode_internal(status)
    return text