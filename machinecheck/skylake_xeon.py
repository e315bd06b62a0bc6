"""Decoding of Skylake server specific machine check details."""

from __future__ import annotations

from .nehalem import BitField, decode_bitfield
from .record import MCI_STATUS_MISCV, Mce, extract, test_prefix

# Memory error was corrected by mirroring with channel failover.
SKX_MCI_MISC_FO = 1 << 63
# Memory error was corrected by mirroring and the primary channel was scrubbed.
SKX_MCI_MISC_MC = 1 << 62

_S = BitField.single

PCU_1 = {
    0x00: "No Error",
    0x0D: "MCA_DMI_TRAINING_TIMEOUT",
    0x0F: "MCA_DMI_CPU_RESET_ACK_TIMEOUT",
    0x10: "MCA_MORE_THAN_ONE_LT_AGENT",
    0x1E: "MCA_BIOS_RST_CPL_INVALID_SEQ",
    0x1F: "MCA_BIOS_INVALID_PKG_STATE_CONFIG",
    0x25: "MCA_MESSAGE_CHANNEL_TIMEOUT",
    0x27: "MCA_MSGCH_PMREQ_CMP_TIMEOUT",
    0x30: "MCA_PKGC_DIRECT_WAKE_RING_TIMEOUT",
    0x31: "MCA_PKGC_INVALID_RSP_PCH",
    0x33: "MCA_PKGC_WATCHDOG_HANG_CBZ_DOWN",
    0x34: "MCA_PKGC_WATCHDOG_HANG_CBZ_UP",
    0x38: "MCA_PKGC_WATCHDOG_HANG_C3_UP_SF",
    0x40: "MCA_SVID_VCCIN_VR_ICC_MAX_FAILURE",
    0x41: "MCA_SVID_COMMAND_TIMEOUT",
    0x42: "MCA_SVID_VCCIN_VR_VOUT_FAILURE",
    0x43: "MCA_SVID_CPU_VR_CAPABILITY_ERROR",
    0x44: "MCA_SVID_CRITICAL_VR_FAILED",
    0x45: "MCA_SVID_SA_ITD_ERROR",
    0x46: "MCA_SVID_READ_REG_FAILED",
    0x47: "MCA_SVID_WRITE_REG_FAILED",
    0x48: "MCA_SVID_PKGC_INIT_FAILED",
    0x49: "MCA_SVID_PKGC_CONFIG_FAILED",
    0x4A: "MCA_SVID_PKGC_REQUEST_FAILED",
    0x4B: "MCA_SVID_IMON_REQUEST_FAILED",
    0x4C: "MCA_SVID_ALERT_REQUEST_FAILED",
    0x4D: "MCA_SVID_MCP_VR_ABSENT_OR_RAMP_ERROR",
    0x4E: "MCA_SVID_UNEXPECTED_MCP_VR_DETECTED",
    0x51: "MCA_FIVR_CATAS_OVERVOL_FAULT",
    0x52: "MCA_FIVR_CATAS_OVERCUR_FAULT",
    0x58: "MCA_WATCHDOG_TIMEOUT_PKGC_SECONDARY",
    0x59: "MCA_WATCHDOG_TIMEOUT_PKGC_MAIN",
    0x5A: "MCA_WATCHDOG_TIMEOUT_PKGS_MAIN",
    0x61: "MCA_PKGS_CPD_UNCPD_TIMEOUT",
    0x63: "MCA_PKGS_INVALID_REQ_PCH",
    0x64: "MCA_PKGS_INVALID_REQ_INTERNAL",
    0x65: "MCA_PKGS_INVALID_RSP_INTERNAL",
    0x6B: "MCA_PKGS_SMBUS_VPP_PAUSE_TIMEOUT",
    0x81: "MCA_RECOVERABLE_DIE_THERMAL_TOO_HOT",
}

PCU_MC4 = (BitField(24, PCU_1),)

UPI = {
    0x00: "UC Phy Initialization Failure",
    0x01: "UC Phy detected drift buffer alarm",
    0x02: "UC Phy detected latency buffer rollover",
    0x10: "UC LL Rx detected CRC error: unsuccessful LLR: entered abort state",
    0x11: "UC LL Rx unsupported or undefined packet",
    0x12: "UC LL or Phy control error",
    0x13: "UC LL Rx parameter exchange exception",
    0x1F: "UC LL detected control error from the link-mesh interface",
    0x20: "COR Phy initialization abort",
    0x21: "COR Phy reset",
    0x22: "COR Phy lane failure, recovery in x8 width",
    0x23: "COR Phy L0c error corrected without Phy reset",
    0x24: "COR Phy L0c error triggering Phy Reset",
    0x25: "COR Phy L0p exit error corrected with Phy reset",
    0x30: "COR LL Rx detected CRC error - successful LLR without Phy Reinit",
    0x31: "COR LL Rx detected CRC error - successful LLR with Phy Reinit",
}

UPI_MC = (BitField(16, UPI),)

# Details of MSCOD 0x12, "UC LL or Phy control error".
UPI_0X12 = (
    _S(22, "Phy Control Error"),
    _S(23, "Unexpected Retry.Ack flit"),
    _S(24, "Unexpected Retry.Req flit"),
    _S(25, "RF parity error"),
    _S(26, "Routeback Table error"),
    _S(27, "unexpected Tx Protocol flit (EOP, Header or Data)"),
    _S(28, "Rx Header-or-Credit BGF credit overflow/underflow"),
    _S(29, "Link Layer Reset still in progress when Phy enters L0"),
    _S(30, "Link Layer reset initiated while protocol traffic not idle"),
    _S(31, "Link Layer Tx Parity Error"),
)

MC_BITS = (
    _S(16, "Address parity error"),
    _S(17, "HA write data parity error"),
    _S(18, "HA write byte enable parity error"),
    _S(19, "Corrected patrol scrub error"),
    _S(20, "Uncorrected patrol scrub error"),
    _S(21, "Corrected spare error"),
    _S(22, "Uncorrected spare error"),
    _S(23, "Any HA read error"),
    _S(24, "WDB read parity error"),
    _S(25, "DDR4 command address parity error"),
    _S(26, "Uncorrected address parity error"),
)

MC_0X8XX = {
    0x0: "Unrecognized request type",
    0x1: "Read response to an invalid scoreboard entry",
    0x2: "Unexpected read response",
    0x3: "DDR4 completion to an invalid scoreboard entry",
    0x4: "Completion to an invalid scoreboard entry",
    0x5: "Completion FIFO overflow",
    0x6: "Correctable parity error",
    0x7: "Uncorrectable error",
    0x8: "Interrupt received while outstanding interrupt was not ACKed",
    0x9: "ERID FIFO overflow",
    0xA: "Error on Write credits",
    0xB: "Error on Read credits",
    0xC: "Scheduler error",
    0xD: "Error event",
}

MEMCTRL_MC13 = (BitField(16, MC_0X8XX),)

M2M = (
    _S(16, "MscodDataRdErr"),
    _S(17, "Reserved"),
    _S(18, "MscodPtlWrErr"),
    _S(19, "MscodFullWrErr"),
    _S(20, "MscodBgfErr"),
    _S(21, "MscodTimeout"),
    _S(22, "MscodParErr"),
    _S(23, "MscodBucket1Err"),
)

_PCU_CLASSES = {
    0x402: "Internal errors ",
    0x403: "Internal errors ",
    0x406: "Intel TXT errors ",
    0x407: "Other UBOX Internal errors ",
}

# Memory controller banks map to fixed channels; the second controller's
# channels are numbered 3, 4 and 5.
_MC_BANK_CHANNEL = {13: 0, 14: 1, 15: 3, 16: 4, 17: 2, 18: 5}


def skylake_s_decode_model(cputype, bank: int, status: int, misc: int) -> str:
    """Model specific details of a Skylake server machine check."""
    if bank == 4:
        text = "PCU: " + _PCU_CLASSES.get(extract(status, 0, 15) & ~(1 << 12), "")
        if extract(status, 16, 19):
            text += "PCU internal error "
        return text + decode_bitfield(status, PCU_MC4)
    if bank in (5, 12, 19):
        text = "UPI: " + decode_bitfield(status, UPI_MC)
        if extract(status, 16, 21) == 0x12:
            text += decode_bitfield(status, UPI_0X12)
        return text
    if bank in (7, 8):
        return "M2M: " + decode_bitfield(status, M2M)
    if 13 <= bank <= 18:
        table = MEMCTRL_MC13 if extract(status, 27, 27) else MC_BITS
        return "MemCtrl: " + decode_bitfield(status, table)
    return ""


def skylake_s_ce_type(bank: int, status: int, misc: int) -> int:
    """How a corrected memory error was corrected: 0 ECC, 1 failover, 2 mirror scrub."""
    if bank not in (7, 8):
        return 0
    if status & MCI_STATUS_MISCV:
        if misc & SKX_MCI_MISC_FO:
            return 1
        if misc & SKX_MCI_MISC_MC:
            return 2
    return 0


def skylake_memerr_misc(mce: Mce) -> int | None:
    """Channel of a memory error derived from the bank, or None.

    The DIMM cannot be identified from the record.
    """
    status = mce.status
    if not test_prefix(7, status & 0xEFFF):
        return None
    chan = extract(status, 0, 3)
    if chan == 0xF:
        return None
    if mce.bank == 7:
        return chan
    if mce.bank == 8:
        return chan + 3
    return _MC_BANK_CHANNEL.get(mce.bank)