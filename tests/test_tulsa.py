from machinecheck.record import MCI_STATUS_MISCV
from machinecheck.tulsa import tulsa_decode_model


def test_empty_status_decodes_to_nothing():
    assert tulsa_decode_model(0, 0) == ""


def test_corrected_events_count():
    text = tulsa_decode_model(5 << 32, 0)
    assert "Corrected events: 5\n" in text


def test_ecc_syndrome_only_with_bit_52():
    status = 0x3F << 44
    assert "ECC syndrome" not in tulsa_decode_model(status, 0)
    assert "ECC syndrome: 3f\n" in tulsa_decode_model(status | (1 << 52), 0)


def test_misc_dumped_raw():
    text = tulsa_decode_model(MCI_STATUS_MISCV | (2 << 40), 0xABC)
    assert "MISC format 2 value abc\n" in text


def test_bus_error_bits():
    text = tulsa_decode_model(0xE0F | (1 << 16) | (1 << 26), 0)
    assert "Parity error detected during FSB request phase" in text
    assert "Pad logic detected a data strobe glitch or sequencing error" in text
    assert "Core 0 request" not in text


def test_internal_front_error():
    text = tulsa_decode_model((1 << 10) | (0x1 << 16), 0)
    assert "Inclusion error from core 0" in text


def test_internal_int_error():
    text = tulsa_decode_model((1 << 10) | (0x200 << 16), 0)
    assert "Internal timeout error" in text


def test_internal_correctable_ecc():
    text = tulsa_decode_model((1 << 10) | (0xC001 << 16), 0)
    assert "Correctable ECC event on outgoing FSB data" in text
    assert "Uncorrectable" not in text


def test_internal_uncorrectable_ecc():
    text = tulsa_decode_model((1 << 10) | (0xE004 << 16), 0)
    assert "Uncorrectable ECC event on outgoing core 1 data" in text