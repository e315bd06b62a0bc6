"""Decoding of Sandy Bridge specific machine check details."""

from __future__ import annotations

from .nehalem import BitField, decode_bitfield
from .record import MCI_STATUS_UC, CpuType, Mce, extract, test_prefix

_S = BitField.single

PCU_1 = {
    0: "No error",
    1: "Non_IMem_Sel",
    2: "I_Parity_Error",
    3: "Bad_OpCode",
    4: "I_Stack_Underflow",
    5: "I_Stack_Overflow",
    6: "D_Stack_Underflow",
    7: "D_Stack_Overflow",
    8: "Non-DMem_Sel",
    9: "D_Parity_Error",
}

PCU_2 = {
    0x00: "No Error",
    0x0D: "MC_IMC_FORCE_SR_S3_TIMEOUT",
    0x0E: "MC_MC_CPD_UNCPD_ST_TIMEOUT",
    0x0F: "MC_PKGS_SAFE_WP_TIMEOUT",
    0x43: "MC_PECI_MAILBOX_QUIESCE_TIMEOUT",
    0x5C: "MC_MORE_THAN_ONE_LT_AGENT",
    0x60: "MC_INVALID_PKGS_REQ_PCH",
    0x61: "MC_INVALID_PKGS_REQ_QPI",
    0x62: "MC_INVALID_PKGS_RES_QPI",
    0x63: "MC_INVALID_PKGC_RES_PCH",
    0x64: "MC_INVALID_PKG_STATE_CONFIG",
    0x70: "MC_WATCHDG_TIMEOUT_PKGC_SECONDARY",
    0x71: "MC_WATCHDG_TIMEOUT_PKGC_MAIN",
    0x72: "MC_WATCHDG_TIMEOUT_PKGS_MAIN",
    0x7A: "MC_HA_FAILSTS_CHANGE_DETECTED",
    0x81: "MC_RECOVERABLE_DIE_THERMAL_TOO_HOT",
}

PCU_MC4 = (BitField(16, PCU_1), BitField(24, PCU_2))

MEMCTRL_MC8 = (
    _S(16, "Address parity error"),
    _S(17, "HA Wrt buffer Data parity error"),
    _S(18, "HA Wrt byte enable parity error"),
    _S(19, "Corrected patrol scrub error"),
    _S(20, "Uncorrected patrol scrub error"),
    _S(21, "Corrected spare error"),
    _S(22, "Uncorrected spare error"),
)

_UNKNOWN = (-1, -1)


def snb_decode_model(cputype, bank: int, status: int, misc: int) -> str:
    """Model specific details of a Sandy Bridge machine check."""
    if bank == 4:
        return "PCU: " + decode_bitfield(status, PCU_MC4) + "\n"
    if bank in (6, 7):
        # MCACOD was decoded already.
        return "QPI\n" if cputype == CpuType.SANDY_BRIDGE_EP else ""
    if 8 <= bank <= 11:
        return "MemCtrl: " + decode_bitfield(status, MEMCTRL_MC8) + "\n"
    return ""


def failrank2dimm(failrank: int, socket: int, channel: int, memdb=None) -> int:
    """DIMM number within a channel for a failing rank, or -1."""
    if 0 <= failrank <= 3:
        return 0
    if failrank in (4, 5):
        return 1
    if failrank in (6, 7):
        # Ranks 6 and 7 belong to a third DIMM only when one exists.
        if memdb is not None and memdb.get_memdimm(socket, channel, 2, False):
            return 2
        return 1
    return -1


def sandy_bridge_ep_memerr_misc(
    mce: Mce, imc_log: bool, memdb=None
) -> tuple[tuple[int, int], tuple[int, int]]:
    """(channel, dimm) of the first and second failing device; -1 when unknown.

    Only corrected extended errors from the iMC banks carry this information.
    """
    status = mce.status
    if (
        not imc_log
        or mce.bank < 8
        or mce.bank > 11
        or status & MCI_STATUS_UC
        or not test_prefix(7, status & 0xEFFF)
    ):
        return _UNKNOWN, _UNKNOWN
    chan = extract(status, 0, 3)
    if chan == 0xF:
        return _UNKNOWN, _UNKNOWN

    first = second = _UNKNOWN
    if extract(mce.misc, 62, 62):
        failrank = extract(mce.misc, 46, 50)
        first = (chan, failrank2dimm(failrank, mce.socketid, chan, memdb))
    if extract(mce.misc, 63, 63):
        failrank = extract(mce.misc, 51, 55)
        second = (chan, failrank2dimm(failrank, mce.socketid, chan, memdb))
    return first, second