# machinecheck

`machinecheck` is a library for decoding machine check records that x86
processors report, and for keeping count of the memory errors they describe.
It uses only the Python standard library and needs Python 3.10 or later.

## What it does

- `machinecheck.p4.decode_intel_mc` turns a record (`machinecheck.record.Mce`)
  into readable text. It decodes the architectural MCG and MCi status bits and
  the MCA error code. It adds model specific detail for Tulsa, Nehalem,
  Xeon 75xx, Sandy Bridge and Skylake Xeon (`CpuType`). It returns a
  `DecodeResult` that holds the text and flags for memory, unclassified and
  thermal events. For IO MCA events it also holds the root port as
  `(segment, bus, device, function)`.
- `machinecheck.memdb.MemoryDatabase` counts corrected and uncorrected memory
  errors per DIMM and per socket. When a threshold is crossed it logs and runs
  a trigger. `prefill` fills DIMM names and locations from DMI
  (bank locator, device locator) pairs. `dump_memory_errors` writes a report,
  with `PrintFlags.ALL` and `PrintFlags.BIOS` as options.
- `machinecheck.yellow.YellowTrigger` and `machinecheck.unknown.UnknownTrigger`
  handle cache threshold ("yellow") indications and errors that cannot be
  classified.
- `machinecheck.trigger.TriggerRunner` starts trigger programs and reaps them.
  By default it runs at most four at a time.
- `machinecheck.tsc` turns a time-stamp counter value into an uptime string.
  `decode_tsc_forced` does this at a given frequency. `decode_tsc_current`
  first checks whether this machine's TSC can be trusted.
- `machinecheck.server.ClientServer` answers `dump [all] [bios]`, `pages` and
  `ping` on a Unix socket. Clients are checked by their passed credentials:
  root is always allowed, and so are the configured uid or gid.
  `server_ping` tells whether a server already answers on a path.
- `machinecheck.sysfs` reads and writes single-value sysfs files.
- `machinecheck.messages.MessageLog` routes all output to standard streams,
  a log file or syslog, according to `SyslogOption`.

## Bit helpers

`extract` takes the first and last bit of a field, both inclusive:

```python
from machinecheck.record import extract, test_prefix

status = 0x9F
extract(status, 0, 3)        # 0xF: channel not specified
test_prefix(7, status)       # True: a memory controller error
```

## Decoding a record

```python
from machinecheck.p4 import decode_intel_mc
from machinecheck.record import SOCKETID_OFFSET, CpuType, Mce

mce = Mce(status=0x8C00_0040_0000_009F, bank=8, socketid=0)
result = decode_intel_mc(mce, CpuType.SANDY_BRIDGE_EP, SOCKETID_OFFSET + 4)
print(result.text)
result.memory_error          # True
```

You can pass a `YellowTrigger` and an `UnknownTrigger` to `decode_intel_mc`.
It then runs them for the events they cover.

## Thresholds

`MemoryDatabase` does not do the leaky bucket arithmetic itself. Each
`ErrTriggers` holds two threshold objects that you supply. Such an object has
these attributes:

- `capacity`, `agetime`, `log` and `trigger` (a program path or `None`)
- `new_bucket()`, which returns an object with a `count` attribute
- `account(bucket, inc, when)`, which returns `True` when the threshold is crossed
- `age(bucket, now)`
- `output(bucket)`, which returns a description of the bucket

```python
import sys
from dataclasses import dataclass

from machinecheck.memdb import ErrTriggers, MemoryDatabase
from machinecheck.messages import MessageLog, SyslogOption
from machinecheck.record import Mce
from machinecheck.trigger import TriggerRunner


@dataclass
class Bucket:
    count: int = 0


@dataclass
class Threshold:
    capacity: int = 10
    agetime: int = 86400
    log: bool = True
    trigger: str | None = None

    def new_bucket(self):
        return Bucket()

    def account(self, bucket, inc, when):
        bucket.count += inc
        return bucket.count >= self.capacity

    def age(self, bucket, now):
        pass

    def output(self, bucket):
        return f"{bucket.count} in 24h"


log = MessageLog(SyslogOption.NONE)
db = MemoryDatabase(
    log,
    TriggerRunner(log),
    ErrTriggers(Threshold(), Threshold(), "DIMM"),
    ErrTriggers(Threshold(), Threshold(), "Socket"),
)
db.memory_error(Mce(socketid=0, time=1), channel=1, dimm=0)
db.dump_memory_errors(sys.stdout)
```

## Triggers

Triggers are executable programs. They get what they need through their
environment:

- where the error is: `LOCATION`, `SOCKETID`, `CHANNEL`, `DIMM`, `CPU`
- the counts: `TOTALCOUNT`, `CECOUNT`, `UCCOUNT`, `THRESHOLD_COUNT`
- the threshold that was crossed: `THRESHOLD`, `AGETIME`
- a readable `MESSAGE`

You may give `TriggerRunner` a directory. Triggers then run there, and
`check` looks their names up there. Trigger exit statuses and signals are
reported through the `MessageLog` when `reap` or `wait` collects them.

## What it does not do

- There is no command-line program or daemon. The package is a library, and
  reading records from the kernel and the main loop are left to the caller.
- There is no per-page error accounting and no page offlining.
  `ClientServer` answers `pages` by calling `dump_page_errors(out)` on the
  object you pass as `pages`.
- There is no leaky bucket implementation and no configuration file reader.
  Thresholds and settings are passed in as objects and arguments.