"""
Delta sampling of CPU, memory/swap and primary-disk throughput.

Two sampler variants exist: ProcSampler reads the Linux /proc counter files
directly, PsutilSampler queries the platform through psutil. Both produce the
same SystemSample, and select_sampler() picks one once at process start.
"""

import re
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import psutil

from sentra_agent.errors import SamplingUnavailable
from sentra_log import get_logger

logger = get_logger(__name__)

SAMPLE_WINDOW = 0.2  # seconds between the two snapshots
SECTOR_SIZE = 512  # bytes, /proc/diskstats always counts 512B sectors

# Canonical first disks, checked in order before falling back to the first
# device that survives the filter.
PRIMARY_DISK_PRIORITY = ('sda', 'vda', 'xvda', 'nvme0n1')
SKIPPED_DISK_PREFIXES = ('loop', 'ram', 'sr', 'dm-', 'zram', 'md', 'fd')
_PARTITION_RE = re.compile(r'\d+$')
_NVME_DISK_RE = re.compile(r'^nvme\d+n\d+$')
_MMC_DISK_RE = re.compile(r'^mmcblk\d+$')


@dataclass
class CpuTimes:
    """Cumulative CPU ticks"""
    idle: int
    total: int


@dataclass
class MemoryUsage:
    """Memory or swap occupancy in bytes"""
    total: int
    used: int
    free: int
    used_percent: float


@dataclass
class DiskCounters:
    """Cumulative transfer counters for one block device"""
    name: str
    read_sectors: int
    write_sectors: int


@dataclass
class DiskThroughput:
    """Read/write rate of the primary disk"""
    device: str
    read_kbps: float = 0.0
    write_kbps: float = 0.0


@dataclass
class SystemSample:
    """
    One best-effort snapshot. Any metric may be None when its source was
    unreadable; None means "unknown", never zero.
    """
    timestamp: datetime
    cpu_percent: Optional[float]
    memory: Optional[MemoryUsage]
    swap: Optional[MemoryUsage]
    disk: DiskThroughput = field(default_factory=lambda: DiskThroughput(device='N/A'))
    uptime_seconds: Optional[float] = None


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, value))


def cpu_usage(first: CpuTimes, second: CpuTimes) -> float:
    """
    Usage % between two tick snapshots: 1 - (delta idle / delta total).

    No elapsed ticks (or a counter reset) reads as 0% busy; the clamp keeps
    any other inconsistent pair inside [0, 100].
    """
    idle_delta = second.idle - first.idle
    total_delta = second.total - first.total
    if total_delta <= 0:
        return 0.0
    return clamp_percent((1 - idle_delta / total_delta) * 100)


def memory_usage(total: int, used: int, free: int) -> MemoryUsage:
    used_percent = (used / total) * 100 if total else 0.0
    return MemoryUsage(
        total=total,
        used=used,
        free=free,
        used_percent=clamp_percent(used_percent)
    )


def is_partition(name: str) -> bool:
    if _NVME_DISK_RE.match(name) or _MMC_DISK_RE.match(name):
        return False
    return bool(_PARTITION_RE.search(name))


def pick_primary_disk(
    devices: List[DiskCounters],
    skip_partitions: bool = True
) -> Optional[DiskCounters]:
    """Choose the primary physical disk, skipping virtual devices and partitions"""
    candidates = [
        d for d in devices
        if not d.name.startswith(SKIPPED_DISK_PREFIXES)
        and not (skip_partitions and is_partition(d.name))
    ]

    by_name = {d.name: d for d in candidates}
    for name in PRIMARY_DISK_PRIORITY:
        if name in by_name:
            return by_name[name]

    return candidates[0] if candidates else None


def disk_throughput(
    first: Optional[DiskCounters],
    second: Optional[DiskCounters],
    elapsed: float,
    sector_size: int = SECTOR_SIZE
) -> DiskThroughput:
    """
    KB/s between two counter snapshots of the same device.

    Missing snapshots, a device change between snapshots, or a non-positive
    window yield zero throughput. Negative deltas (wraparound) clamp to 0.
    """
    if first is None:
        return DiskThroughput(device='N/A')
    if second is None:
        return DiskThroughput(device=first.name)
    if second.name != first.name or elapsed <= 0:
        return DiskThroughput(device=second.name)

    read_delta = max(0, second.read_sectors - first.read_sectors)
    write_delta = max(0, second.write_sectors - first.write_sectors)

    return DiskThroughput(
        device=second.name,
        read_kbps=read_delta * sector_size / 1024 / elapsed,
        write_kbps=write_delta * sector_size / 1024 / elapsed
    )


# /proc parsing

def parse_cpu_times(stat_text: str) -> CpuTimes:
    """Parse the aggregate "cpu" line of /proc/stat"""
    first_line = stat_text.splitlines()[0] if stat_text else ''
    parts = first_line.split()
    if not parts or parts[0] != 'cpu':
        raise SamplingUnavailable('no aggregate cpu line in /proc/stat')

    try:
        ticks = [int(p) for p in parts[1:]]
    except ValueError as e:
        raise SamplingUnavailable(f'unparsable /proc/stat: {e}')

    if len(ticks) < 4:
        raise SamplingUnavailable('too few cpu fields in /proc/stat')

    # user nice system idle iowait irq softirq steal guest guest_nice
    idle = ticks[3] + (ticks[4] if len(ticks) > 4 else 0)
    return CpuTimes(idle=idle, total=sum(ticks))


def parse_meminfo(meminfo_text: str) -> Dict[str, int]:
    """Parse /proc/meminfo into bytes keyed by field name"""
    values = {}
    for line in meminfo_text.splitlines():
        match = re.match(r'^([^:]+):\s+(\d+)', line)
        if match:
            values[match.group(1)] = int(match.group(2)) * 1024
    return values


def memory_from_meminfo(values: Dict[str, int]) -> Tuple[MemoryUsage, MemoryUsage]:
    total = values.get('MemTotal', 0)
    free = values.get('MemFree', 0)
    buffers = values.get('Buffers', 0)
    cached = values.get('Cached', 0)
    memory = memory_usage(total, total - free - buffers - cached, free)

    swap_total = values.get('SwapTotal', 0)
    swap_free = values.get('SwapFree', 0)
    swap = memory_usage(swap_total, swap_total - swap_free, swap_free)

    return memory, swap


def parse_diskstats(diskstats_text: str) -> List[DiskCounters]:
    devices = []
    for line in diskstats_text.splitlines():
        parts = line.split()
        if len(parts) < 14:
            continue
        try:
            devices.append(DiskCounters(
                name=parts[2],
                read_sectors=int(parts[5]),
                write_sectors=int(parts[9])
            ))
        except ValueError:
            continue
    return devices


class Sampler(ABC):
    """
    Takes a two-snapshot sample of the local host.

    Subclasses provide the individual reads; each read raises
    SamplingUnavailable when its source is missing and sample() degrades
    that one metric instead of failing the whole snapshot.
    """

    name = 'base'

    def __init__(self, window: float = SAMPLE_WINDOW):
        self.window = window

    @abstractmethod
    def read_cpu(self):
        """Return an opaque CPU snapshot for cpu_percent()"""

    @abstractmethod
    def cpu_percent(self, first, second) -> float:
        """Usage % between two snapshots returned by read_cpu()"""

    @abstractmethod
    def read_memory(self) -> Tuple[MemoryUsage, MemoryUsage]:
        """Return (memory, swap) occupancy"""

    @abstractmethod
    def read_disk(self) -> Optional[DiskCounters]:
        """Return counters of the primary disk, or None if there is none"""

    @abstractmethod
    def read_uptime(self) -> float:
        """Seconds since boot"""

    def _attempt(self, metric: str, reader, *args):
        try:
            return reader(*args)
        except (SamplingUnavailable, OSError, ValueError, psutil.Error) as e:
            logger.debug(
                f"{metric} unavailable",
                extra={'context': {'sampler': self.name, 'error': str(e)}}
            )
            return None

    def sample(self) -> SystemSample:
        """Collect a snapshot, suspending once for the sampling window"""
        cpu_first = self._attempt('cpu', self.read_cpu)
        disk_first = self._attempt('disk', self.read_disk)
        started = time.monotonic()

        time.sleep(self.window)

        cpu_second = self._attempt('cpu', self.read_cpu) if cpu_first is not None else None
        disk_second = self._attempt('disk', self.read_disk) if disk_first is not None else None
        elapsed = time.monotonic() - started

        cpu = None
        if cpu_first is not None and cpu_second is not None:
            cpu = self._attempt('cpu', self.cpu_percent, cpu_first, cpu_second)

        memory = self._attempt('memory', self.read_memory)

        return SystemSample(
            timestamp=datetime.now(timezone.utc),
            cpu_percent=cpu,
            memory=memory[0] if memory else None,
            swap=memory[1] if memory else None,
            disk=disk_throughput(disk_first, disk_second, elapsed),
            uptime_seconds=self._attempt('uptime', self.read_uptime)
        )


class ProcSampler(Sampler):
    """Counter-file sampler for Linux /proc"""

    name = 'proc'

    def __init__(self, proc_root: str = '/proc', window: float = SAMPLE_WINDOW):
        super().__init__(window)
        self.proc_root = Path(proc_root)

    def _read(self, name: str) -> str:
        path = self.proc_root / name
        try:
            return path.read_text()
        except OSError as e:
            raise SamplingUnavailable(f'cannot read {path}: {e}')

    def read_cpu(self) -> CpuTimes:
        return parse_cpu_times(self._read('stat'))

    def cpu_percent(self, first: CpuTimes, second: CpuTimes) -> float:
        return cpu_usage(first, second)

    def read_memory(self) -> Tuple[MemoryUsage, MemoryUsage]:
        return memory_from_meminfo(parse_meminfo(self._read('meminfo')))

    def read_disk(self) -> Optional[DiskCounters]:
        return pick_primary_disk(parse_diskstats(self._read('diskstats')))

    def read_uptime(self) -> float:
        fields = self._read('uptime').split()
        if not fields:
            raise SamplingUnavailable('empty /proc/uptime')
        return float(fields[0])


class PsutilSampler(Sampler):
    """Query-based sampler for platforms without /proc (Windows, macOS, BSD)"""

    name = 'psutil'

    def read_cpu(self) -> float:
        # Each call reports usage since the previous call
        return psutil.cpu_percent(interval=None)

    def cpu_percent(self, first: float, second: float) -> float:
        return clamp_percent(second)

    def read_memory(self) -> Tuple[MemoryUsage, MemoryUsage]:
        vm = psutil.virtual_memory()
        memory = memory_usage(vm.total, vm.total - vm.available, vm.available)

        try:
            sw = psutil.swap_memory()
            swap = memory_usage(sw.total, sw.used, sw.free)
        except (OSError, RuntimeError, psutil.Error):
            swap = memory_usage(0, 0, 0)

        return memory, swap

    def read_disk(self) -> Optional[DiskCounters]:
        per_disk = psutil.disk_io_counters(perdisk=True) or {}
        devices = [
            # Express bytes as 512B sectors so disk_throughput() applies as-is
            DiskCounters(
                name=name,
                read_sectors=counters.read_bytes // SECTOR_SIZE,
                write_sectors=counters.write_bytes // SECTOR_SIZE
            )
            for name, counters in sorted(per_disk.items())
        ]
        # psutil reports whole disks here (PhysicalDrive0, disk0), whose
        # names end in digits like Linux partitions do
        return pick_primary_disk(devices, skip_partitions=False)

    def read_uptime(self) -> float:
        return max(0.0, time.time() - psutil.boot_time())


def select_sampler(
    platform: Optional[str] = None,
    proc_root: str = '/proc',
    window: float = SAMPLE_WINDOW
) -> Sampler:
    """Pick the sampler variant for this platform"""
    platform = platform or sys.platform
    if platform.startswith('linux') and (Path(proc_root) / 'stat').exists():
        return ProcSampler(proc_root=proc_root, window=window)
    return PsutilSampler(window=window)
