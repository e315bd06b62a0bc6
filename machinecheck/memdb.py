"""In-memory database of memory errors per DIMM and per socket."""

from __future__ import annotations

import enum
import os
import re
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Protocol, TextIO

from .record import MCI_STATUS_UC, SOCKETID_OFFSET, Mce

SHASH = 17
FNV32_OFFSET = 2166136261
FNV32_PRIME = 0x01000193
_DEFAULT_PATH = "/sbin:/usr/sbin:/bin:/usr/bin"


class Bucket(Protocol):
    """Leaky bucket state; only its current fill level is read here."""

    count: int


class BucketConf(Protocol):
    """Threshold configuration that owns the leaky bucket arithmetic."""

    capacity: int
    agetime: int
    log: bool
    trigger: str | None

    def new_bucket(self) -> Bucket: ...

    def account(self, bucket: Bucket, inc: int, when: int) -> bool: ...

    def age(self, bucket: Bucket, now: int) -> None: ...

    def output(self, bucket: Bucket) -> str: ...


class PrintFlags(enum.IntFlag):
    """Options for dumping the database."""

    NONE = 0
    ALL = 1 << 0
    BIOS = 1 << 1


@dataclass
class ErrorCount:
    """Total count of one kind of error together with its leaky bucket."""

    bucket: Any = None
    count: int = 0


@dataclass
class MemDimm:
    """One DIMM, or a whole socket when channel and dimm are -1."""

    socketid: int
    channel: int = -1
    dimm: int = -1
    ce: ErrorCount = field(default_factory=ErrorCount)
    uc: ErrorCount = field(default_factory=ErrorCount)
    name: str | None = None
    location: str | None = None
    memdev: Any = None

    @property
    def sort_key(self) -> tuple[int, int, int]:
        return (self.socketid, self.channel, self.dimm)


@dataclass
class ErrTriggers:
    """Thresholds for corrected and uncorrected errors of one kind of unit."""

    ce_bucket_conf: Any
    uc_bucket_conf: Any
    type: str


def dimmhash(socket: int, dimm: int, channel: int) -> int:
    """FNV-1a hash of a DIMM address, reduced to one of SHASH slots."""
    value = FNV32_OFFSET
    for byte in (socket, socket >> 8, dimm, channel):
        value = ((value ^ (byte & 0xFF)) * FNV32_PRIME) & 0xFFFFFFFF
    return value % SHASH


_NODE_CHANNEL_DIMM = re.compile(r"_Node\s*(\d+)_Channel\s*(\d+)_Dimm\s*(\d+)")
_NODE_CHANNEL_DIMM_UPPER = re.compile(r"NODE\s*(\d+)\s*CHANNEL\s*(\d+)\s*DIMM\s*(\d+)")
_NODE_BANK = re.compile(r"Node\s*(\d+)_Bank\s*(\d+)")
_A_BANK = re.compile(r"A\s*(\d+)_BANK\s*(\d+)")


def parse_dimm_addr(text: str | None) -> tuple[int, int, int] | None:
    """Parse a DMI bank locator into (socket, channel, dimm).

    Formats without a channel report it as -1.
    """
    if not text:
        return None
    underscore = text.find("_")
    tail = text[underscore:] if underscore >= 0 else ""
    match = _NODE_CHANNEL_DIMM.match(tail) or _NODE_CHANNEL_DIMM_UPPER.match(text)
    if match:
        socket, channel, dimm = (int(g) for g in match.groups())
        return socket, channel, dimm
    match = _NODE_BANK.match(text) or _A_BANK.match(text)
    if match:
        socket, dimm = (int(g) for g in match.groups())
        return socket, -1, dimm
    return None


def format_location(md: MemDimm) -> str:
    """Human readable location of a DIMM."""
    channel = "?" if md.channel == -1 else str(md.channel)
    dimm = "?" if md.dimm == -1 else str(md.dimm)
    sep = " " if md.location and md.name else ""
    return (
        f"SOCKET:{md.socketid} CHANNEL:{channel} DIMM:{dimm} "
        f"[{md.location or ''}{sep}{md.name or ''}]"
    )


class MemoryDatabase:
    """Counts memory errors per DIMM and per socket and fires triggers."""

    def __init__(
        self,
        log,
        runner,
        dimms: ErrTriggers,
        sockets: ErrTriggers,
        memdb_enabled: bool = True,
        sockdb_enabled: bool = True,
    ):
        self.log = log
        self.runner = runner
        self.dimms = dimms
        self.sockets = sockets
        self.memdb_enabled = memdb_enabled
        self.sockdb_enabled = sockdb_enabled
        self._dimms: dict[tuple[int, int, int], MemDimm] = {}
        self._warned_socketid = False
        self._warned_prefill = False
        self._prefilled = False

    def __len__(self) -> int:
        return len(self._dimms)

    def __iter__(self):
        return iter(sorted(self._dimms.values(), key=lambda md: md.sort_key))

    def get_memdimm(
        self, socketid: int, channel: int, dimm: int, insert: bool = False
    ) -> MemDimm | None:
        """Look up a DIMM, creating it when insert is true."""
        key = (socketid, channel, dimm)
        md = self._dimms.get(key)
        if md is not None or not insert:
            return md
        md = MemDimm(
            socketid,
            channel,
            dimm,
            ce=ErrorCount(self.dimms.ce_bucket_conf.new_bucket()),
            uc=ErrorCount(self.dimms.uc_bucket_conf.new_bucket()),
        )
        self._dimms[key] = md
        return md

    def trigger(
        self,
        msg: str,
        md: MemDimm,
        t: int,
        et: ErrorCount,
        conf,
        args=None,
        sync: bool = False,
        reporter: str = "",
    ):
        """Log a crossed threshold and run the configured trigger, if any."""
        location = format_location(md)
        thresh = conf.output(et.bucket)
        out = f"{msg}: {thresh}"
        if conf.log:
            self.log.general(f"{out}\n")
            self.log.general(f"Location {location}\n")
        if not conf.trigger:
            return None
        env = {
            "PATH": os.environ.get("PATH") or _DEFAULT_PATH,
            "THRESHOLD": thresh,
            "TOTALCOUNT": str(et.count),
            "LOCATION": location,
        }
        if md.location:
            env["DMI_LOCATION"] = md.location
        if md.name:
            env["DMI_NAME"] = md.name
        if md.dimm != -1:
            env["DIMM"] = str(md.dimm)
        if md.channel != -1:
            env["CHANNEL"] = str(md.channel)
        env["SOCKETID"] = str(md.socketid)
        env["CECOUNT"] = str(md.ce.count)
        env["UCCOUNT"] = str(md.uc.count)
        if t:
            env["LASTEVENT"] = str(t)
        env["AGETIME"] = str(conf.agetime)
        env["MESSAGE"] = out
        env["THRESHOLD_COUNT"] = str(et.bucket.count)
        return self.runner.run(conf.trigger, args, env, sync, reporter)

    def _account_over(
        self, triggers: ErrTriggers, md: MemDimm, mce: Mce, corr_err_cnt: int, reporter: str
    ) -> None:
        # Lost errors are assumed to be corrected ones.
        if not corr_err_cnt:
            return
        lost = corr_err_cnt - 1
        if lost <= 0:
            return
        md.ce.count += lost
        conf = triggers.ce_bucket_conf
        if conf.account(md.ce.bucket, lost, mce.time):
            msg = f"Fallback {triggers.type} memory error count {lost} exceeded threshold"
            self.trigger(msg, md, 0, md.ce, conf, None, False, reporter)

    def _account_memdb(
        self, triggers: ErrTriggers, md: MemDimm, mce: Mce, reporter: str
    ) -> None:
        uncorrected = bool(mce.status & MCI_STATUS_UC)
        msg = (
            f"{'Un' if uncorrected else ''}corrected {triggers.type} "
            "memory error count exceeded threshold"
        )
        if uncorrected:
            et, conf = md.uc, triggers.uc_bucket_conf
        else:
            et, conf = md.ce, triggers.ce_bucket_conf
        et.count += 1
        if conf.account(et.bucket, 1, mce.time):
            self.trigger(msg, md, mce.time, et, conf, None, False, reporter)

    def memory_error(
        self,
        mce: Mce,
        channel: int = -1,
        dimm: int = -1,
        corr_err_cnt: int = 0,
        recordlen: int = SOCKETID_OFFSET + 4,
    ) -> None:
        """Record a memory error; channel/dimm of -1 mean unspecified."""
        if recordlen < SOCKETID_OFFSET:
            if not self._warned_socketid:
                self.log.error(
                    "Cannot account memory errors because kernel does not report socketid"
                )
                self._warned_socketid = True
            return
        if self.memdb_enabled and (channel != -1 or dimm != -1):
            md = self.get_memdimm(mce.socketid, channel, dimm, True)
            self._account_memdb(self.dimms, md, mce, "memdb")
        if self.sockdb_enabled:
            md = self.get_memdimm(mce.socketid, -1, -1, True)
            self._account_over(self.sockets, md, mce, corr_err_cnt, "sockdb_fallback")
            self._account_memdb(self.sockets, md, mce, "sockdb_memdb")

    def _dump_errtype(self, name: str, et: ErrorCount, out: TextIO, flags, conf) -> None:
        show_all = bool(flags & PrintFlags.ALL)
        conf.age(et.bucket, int(time.time()))
        if et.count or et.bucket.count or show_all:
            out.write(f"{name}:\n")
        if et.count or show_all:
            out.write(f"\t{et.count} total\n")
        if conf.capacity and (et.bucket.count or show_all):
            out.write(f"\t{conf.output(et.bucket)}\n")

    @staticmethod
    def _dump_bios(md: MemDimm, out: TextIO) -> None:
        parts = []
        if md.name:
            parts.append(f'DMI_NAME "{md.name}"')
        if md.location:
            parts.append(f'DMI_LOCATION "{md.location}"')
        if parts:
            out.write(" ".join(parts) + "\n")

    def _dump_dimm(self, md: MemDimm, out: TextIO, flags) -> None:
        if md.ce.count + md.uc.count <= 0 and not flags & PrintFlags.ALL:
            return
        channel = "any" if md.channel == -1 else str(md.channel)
        dimm = "any" if md.dimm == -1 else str(md.dimm)
        out.write(f"SOCKET {md.socketid} CHANNEL {channel} DIMM {dimm}\n")
        if flags & PrintFlags.BIOS:
            self._dump_bios(md, out)
        self._dump_errtype(
            "corrected memory errors", md.ce, out, flags, self.dimms.ce_bucket_conf
        )
        self._dump_errtype(
            "uncorrected memory errors", md.uc, out, flags, self.dimms.uc_bucket_conf
        )

    def dump_memory_errors(self, out: TextIO, flags=PrintFlags.NONE) -> None:
        """Write all DIMMs, sorted by socket, channel and dimm."""
        for index, md in enumerate(self):
            out.write("\n" if index else "Memory errors\n")
            self._dump_dimm(md, out, flags)

    def prefill(self, devices: Iterable[tuple[str | None, str | None]]) -> int:
        """Populate DIMMs from DMI (bank locator, device locator) pairs.

        Returns the number of DIMMs filled in.
        """
        if self._prefilled or not self.memdb_enabled:
            return 0
        self._prefilled = True
        filled = missed = 0
        for device in devices:
            bank_locator, device_locator = device
            address = parse_dimm_addr(bank_locator)
            if address is None:
                missed += 1
                continue
            md = self.get_memdimm(*address, True)
            if md.memdev is not None:
                missed += 1
                continue
            md.memdev = device
            md.location = bank_locator
            md.name = device_locator
            filled += 1
        if missed and not self._warned_prefill:
            self.log.error("failed to prefill DIMM database from DMI data")
            self._warned_prefill = True
        return filled