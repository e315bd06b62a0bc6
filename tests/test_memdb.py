import io
from dataclasses import dataclass, field

import pytest

from machinecheck.memdb import (
    SHASH,
    ErrorCount,
    ErrTriggers,
    MemDimm,
    MemoryDatabase,
    PrintFlags,
    dimmhash,
    format_location,
    parse_dimm_addr,
)
from machinecheck.messages import MessageLog, SyslogOption
from machinecheck.record import MCI_STATUS_UC, Mce


@dataclass
class FakeBucket:
    count: int = 0


@dataclass
class FakeConf:
    threshold: int = 3
    capacity: int = 10
    agetime: int = 86400
    log: bool = True
    trigger: str | None = None

    def new_bucket(self):
        return FakeBucket()

    def account(self, bucket, inc, when):
        bucket.count += inc
        return bucket.count >= self.threshold

    def age(self, bucket, now):
        pass

    def output(self, bucket):
        return f"{bucket.count} in window"


@dataclass
class FakeRunner:
    calls: list = field(default_factory=list)

    def run(self, trigger, argv, env, sync, reporter):
        self.calls.append((trigger, argv, env, sync, reporter))
        return "started"


def make_db(trigger=None, threshold=3, memdb=True, sockdb=True):
    out, err = io.StringIO(), io.StringIO()
    log = MessageLog(SyslogOption.NONE, stdout=out, stderr=err)
    runner = FakeRunner()
    dimms = ErrTriggers(
        FakeConf(threshold=threshold, trigger=trigger), FakeConf(threshold=1, trigger=trigger), "DIMM"
    )
    sockets = ErrTriggers(
        FakeConf(threshold=threshold, trigger=trigger), FakeConf(threshold=1, trigger=trigger), "Socket"
    )
    db = MemoryDatabase(log, runner, dimms, sockets, memdb, sockdb)
    return db, runner, out, err


@pytest.mark.parametrize(
    "args", [(0, 0, 0), (1, 2, 3), (-1, -1, -1), (300, 7, 5), (0, -1, 4)]
)
def test_dimmhash_in_range_and_stable(args):
    assert 0 <= dimmhash(*args) < SHASH
    assert dimmhash(*args) == dimmhash(*args)


def test_dimmhash_only_low_bytes_matter():
    assert dimmhash(1, 2, 3) == dimmhash(1, 2 + 256, 3 + 512)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("DIMM_Node1_Channel2_Dimm3", (1, 2, 3)),
        ("NODE 0 CHANNEL 1 DIMM 2", (0, 1, 2)),
        ("Node3_Bank1", (3, -1, 1)),
        ("A2_BANK5", (2, -1, 5)),
        ("garbage", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_dimm_addr(text, expected):
    assert parse_dimm_addr(text) == expected


def test_format_location_unknown_channel():
    md = MemDimm(socketid=1, channel=-1, dimm=2)
    assert format_location(md) == "SOCKET:1 CHANNEL:? DIMM:2 []"


def test_format_location_with_dmi_strings():
    md = MemDimm(socketid=0, channel=1, dimm=2, name="DIMM_A1", location="NODE 0")
    assert format_location(md) == "SOCKET:0 CHANNEL:1 DIMM:2 [NODE 0 DIMM_A1]"


def test_get_memdimm_insert_and_lookup():
    db, *_ = make_db()
    assert db.get_memdimm(0, 1, 2, False) is None
    md = db.get_memdimm(0, 1, 2, True)
    assert db.get_memdimm(0, 1, 2) is md
    assert len(db) == 1
    assert (md.ce.count, md.uc.count) == (0, 0)


def test_short_record_warns_once_and_counts_nothing():
    db, _, _, err = make_db()
    db.memory_error(Mce(), 1, 2, 0, 10)
    db.memory_error(Mce(), 1, 2, 0, 10)
    assert len(db) == 0
    assert err.getvalue().count("does not report socketid") == 1


def test_corrected_errors_counted_per_dimm_and_socket():
    db, _, _, _ = make_db(threshold=100)
    for _ in range(2):
        db.memory_error(Mce(socketid=1), 0, 3)
    assert db.get_memdimm(1, 0, 3).ce.count == 2
    assert db.get_memdimm(1, -1, -1).ce.count == 2


def test_unspecified_dimm_only_goes_to_socket():
    db, *_ = make_db()
    db.memory_error(Mce(socketid=0), -1, -1)
    assert [md.sort_key for md in db] == [(0, -1, -1)]


def test_uncorrected_error_counted_and_triggered():
    db, runner, _, _ = make_db(trigger="/bin/true", sockdb=False)
    db.memory_error(Mce(socketid=0, status=MCI_STATUS_UC, time=42), 1, 2)
    md = db.get_memdimm(0, 1, 2)
    assert md.uc.count == 1 and md.ce.count == 0
    trigger, argv, env, sync, reporter = runner.calls[0]
    assert reporter == "memdb"
    assert env["UCCOUNT"] == "1"
    assert env["LASTEVENT"] == "42"
    assert env["MESSAGE"].startswith("Uncorrected DIMM memory error count exceeded threshold")


def test_fallback_accounts_lost_errors():
    db, _, _, _ = make_db(threshold=100, memdb=False)
    db.memory_error(Mce(socketid=2), -1, -1, corr_err_cnt=5)
    assert db.get_memdimm(2, -1, -1).ce.count == 5


def test_threshold_trigger_environment():
    db, runner, out, _ = make_db(trigger="/bin/true", threshold=2, sockdb=False)
    db.memory_error(Mce(socketid=0, time=7), 1, 2)
    assert runner.calls == []
    db.memory_error(Mce(socketid=0, time=8), 1, 2)
    assert len(runner.calls) == 1
    trigger, argv, env, sync, reporter = runner.calls[0]
    assert trigger == "/bin/true"
    assert argv is None and sync is False
    assert env["DIMM"] == "2" and env["CHANNEL"] == "1" and env["SOCKETID"] == "0"
    assert env["CECOUNT"] == "2" and env["TOTALCOUNT"] == "2"
    assert env["LOCATION"] == "SOCKET:0 CHANNEL:1 DIMM:2 []"
    assert env["THRESHOLD_COUNT"] == "2"
    assert "Location SOCKET:0 CHANNEL:1 DIMM:2 []" in out.getvalue()


def test_trigger_without_program_only_logs():
    db, runner, out, _ = make_db()
    md = db.get_memdimm(0, 0, 0, True)
    assert db.trigger("msg", md, 0, md.ce, db.dimms.ce_bucket_conf) is None
    assert runner.calls == []
    assert "msg: 0 in window\n" in out.getvalue()


def test_dump_sorted_with_header():
    db, *_ = make_db(threshold=100, sockdb=False)
    db.memory_error(Mce(socketid=1), 0, 0)
    db.memory_error(Mce(socketid=0), 1, 2)
    buf = io.StringIO()
    db.dump_memory_errors(buf)
    text = buf.getvalue()
    assert text.startswith("Memory errors\nSOCKET 0 CHANNEL 1 DIMM 2\n")
    assert text.index("SOCKET 0") < text.index("SOCKET 1")
    assert "\t1 total\n" in text


def test_dump_hides_clean_dimms_unless_all():
    db, *_ = make_db()
    db.get_memdimm(0, -1, -1, True)
    quiet = io.StringIO()
    db.dump_memory_errors(quiet)
    assert "SOCKET" not in quiet.getvalue()
    full = io.StringIO()
    db.dump_memory_errors(full, PrintFlags.ALL)
    assert "SOCKET 0 CHANNEL any DIMM any\n" in full.getvalue()
    assert "\t0 total\n" in full.getvalue()


def test_empty_dump_writes_nothing():
    db, *_ = make_db()
    buf = io.StringIO()
    db.dump_memory_errors(buf, PrintFlags.ALL)
    assert buf.getvalue() == ""


def test_prefill_and_bios_dump():
    db, _, _, err = make_db()
    devices = [
        ("NODE 0 CHANNEL 1 DIMM 0", "DIMM_A"),
        ("NODE 0 CHANNEL 1 DIMM 0", "DIMM_B"),
        ("unparseable", "DIMM_C"),
    ]
    assert db.prefill(devices) == 1
    md = db.get_memdimm(0, 1, 0)
    assert md.name == "DIMM_A"
    assert "failed to prefill" in err.getvalue()
    buf = io.StringIO()
    db.dump_memory_errors(buf, PrintFlags.ALL | PrintFlags.BIOS)
    assert 'DMI_NAME "DIMM_A" DMI_LOCATION "NODE 0 CHANNEL 1 DIMM 0"\n' in buf.getvalue()
    assert db.prefill([("NODE 1 CHANNEL 0 DIMM 0", "X")]) == 0


def test_prefill_disabled_database():
    db, *_ = make_db(memdb=False)
    assert db.prefill([("NODE 0 CHANNEL 0 DIMM 0", "X")]) == 0
    assert len(db) == 0


def test_error_count_defaults():
    assert ErrorCount(FakeBucket()).count == 0