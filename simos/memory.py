"""Simulated physical memory with a two-level cache and a per-process block table."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from enum import Enum

_log = logging.getLogger(__name__)

TEXT_BASE = 0x00400000
DATA_BASE = 0x10010000
STACK_TOP = 0x7FFFFFFC
GLOBAL_PTR = 0x10008000
MAX_PROCESS_SIZE = 0x00100000
SYSTEM_PROCESS_ID = -100

L1_CACHE_SIZE = 32 * 1024
L2_CACHE_SIZE = 128 * 1024
CACHE_LINE_SIZE = 64
RAM_SIZE = 128 * 1024 * 1024
MAX_MEM_BLOCKS = 500
NO_PID = -1

_U32 = 0xFFFFFFFF


class CachePolicy(Enum):
    """How writes propagate through the cache hierarchy."""

    WRITE_THROUGH = "write-through"
    WRITE_BACK = "write-back"


@dataclass(frozen=True)
class CacheStats:
    """Hit and miss counters of both cache levels."""

    l1_hits: int = 0
    l1_misses: int = 0
    l2_hits: int = 0
    l2_misses: int = 0


@dataclass(frozen=True)
class MemoryBlock:
    """A contiguous range of RAM, either free or owned by a process."""

    pid: int
    start_addr: int
    end_addr: int
    is_free: bool

    @property
    def size(self) -> int:
        return self.end_addr - self.start_addr + 1


class MemoryAccessError(Exception):
    """An address was out of bounds or not accessible to the current process."""


class AllocationError(Exception):
    """A block could not be allocated or freed."""


@dataclass
class _CacheLine:
    data: bytearray
    dirty: bool = False


@dataclass
class _Cache:
    """Fully associative cache with first-in first-out replacement."""

    line_count: int
    lines: "OrderedDict[int, _CacheLine]" = field(default_factory=OrderedDict)

    def get(self, base: int) -> _CacheLine | None:
        return self.lines.get(base)

    def insert(self, base: int, data: bytes) -> tuple[int, _CacheLine] | None:
        """Store a line; return the evicted (tag, line) when the cache was full."""
        evicted = None
        if len(self.lines) >= self.line_count:
            evicted = self.lines.popitem(last=False)
        self.lines[base] = _CacheLine(bytearray(data))
        return evicted


def _line_base(addr: int) -> int:
    return addr & ~(CACHE_LINE_SIZE - 1)


def _in_bounds(base: int, size: int) -> bool:
    if base > RAM_SIZE or size > RAM_SIZE:
        return False
    return size <= RAM_SIZE - base


def _make_cache(size: int) -> _Cache:
    if size % CACHE_LINE_SIZE:
        raise ValueError("cache size must be a multiple of the line size")
    return _Cache(size // CACHE_LINE_SIZE)


class Memory:
    """RAM behind an L1 and L2 cache, with access control per process."""

    def __init__(self, policy: CachePolicy = CachePolicy.WRITE_THROUGH) -> None:
        self.policy = CachePolicy(policy)
        self._ram: dict[int, bytearray] = {}
        self._l1 = _make_cache(L1_CACHE_SIZE)
        self._l2 = _make_cache(L2_CACHE_SIZE)
        self._blocks: list[MemoryBlock] = [
            MemoryBlock(NO_PID, 0, RAM_SIZE - 1, True)
        ]
        self._current_pid = NO_PID
        self._l1_hits = self._l1_misses = 0
        self._l2_hits = self._l2_misses = 0

    # ------------------------------------------------------------------ RAM

    def _ram_line(self, base: int) -> bytes:
        line = self._ram.get(base)
        return bytes(line) if line is not None else bytes(CACHE_LINE_SIZE)

    def _ram_store_line(self, base: int, data: bytes) -> None:
        self._ram[base] = bytearray(data)

    def _ram_write(self, addr: int, value: int) -> None:
        base = _line_base(addr)
        line = self._ram.setdefault(base, bytearray(CACHE_LINE_SIZE))
        line[addr - base] = value

    # --------------------------------------------------------------- caches

    def _insert_l1(self, base: int, data: bytes) -> _CacheLine:
        evicted = self._l1.insert(base, data)
        if evicted is not None:
            tag, line = evicted
            if line.dirty:
                lower = self._l2.get(tag)
                if lower is not None:
                    lower.data[:] = line.data
                    lower.dirty = True
                else:
                    self._ram_store_line(tag, line.data)
        return self._l1.lines[base]

    def _insert_l2(self, base: int, data: bytes) -> None:
        evicted = self._l2.insert(base, data)
        if evicted is not None:
            tag, line = evicted
            if line.dirty:
                self._ram_store_line(tag, line.data)

    def _read_byte_unchecked(self, addr: int) -> int:
        base = _line_base(addr)
        offset = addr - base

        line = self._l1.get(base)
        if line is not None:
            self._l1_hits += 1
            return line.data[offset]
        self._l1_misses += 1

        lower = self._l2.get(base)
        if lower is not None:
            self._l2_hits += 1
            return self._insert_l1(base, bytes(lower.data)).data[offset]
        self._l2_misses += 1

        data = self._ram_line(base)
        self._insert_l2(base, data)
        return self._insert_l1(base, data).data[offset]

    def _write_through(self, addr: int, value: int) -> None:
        self._ram_write(addr, value)
        base = _line_base(addr)
        for cache in (self._l1, self._l2):
            line = cache.get(base)
            if line is not None:
                line.data[addr - base] = value

    def _write_back(self, addr: int, value: int) -> None:
        base = _line_base(addr)
        for cache in (self._l1, self._l2):
            line = cache.get(base)
            if line is not None:
                line.data[addr - base] = value
                line.dirty = True
                return
        self._ram_write(addr, value)

    def _write_byte_unchecked(self, addr: int, value: int) -> None:
        if self.policy is CachePolicy.WRITE_THROUGH:
            self._write_through(addr, value)
        else:
            self._write_back(addr, value)

    # ------------------------------------------------------- access control

    def _has_access(self, addr: int) -> bool:
        pid = self._current_pid
        if pid == SYSTEM_PROCESS_ID:
            return True

        block = next((b for b in self._blocks if b.pid == pid), None)
        if block is None:
            _log.warning("process read/write access: invalid process id %d", pid)
            return False

        if not block.is_free and block.start_addr <= addr <= block.end_addr:
            return True

        for segment_base in (TEXT_BASE, DATA_BASE):
            start = (segment_base + pid * MAX_PROCESS_SIZE) & _U32
            end = (start + MAX_PROCESS_SIZE) & _U32
            if start <= addr < end:
                return True
        return False

    def _check(self, kind: str, addr: int, size: int) -> int:
        addr &= _U32
        if not _in_bounds(addr, size):
            raise MemoryAccessError(f"{kind}: out of bounds addr=0x{addr:08x}")
        if not self._has_access(addr):
            raise MemoryAccessError(
                f"{kind}: access violation - PID {self._current_pid} "
                f"cannot access 0x{addr:08x}"
            )
        return addr

    # ------------------------------------------------------------------ API

    def set_current_process(self, pid: int) -> None:
        """Set the process whose access rights apply to later reads and writes."""
        self._current_pid = pid

    @property
    def current_process(self) -> int:
        return self._current_pid

    def read_byte(self, addr: int) -> int:
        addr = self._check("read [byte]", addr, 1)
        return self._read_byte_unchecked(addr)

    def read_hword(self, addr: int) -> int:
        addr = self._check("read [hword]", addr, 2)
        return int.from_bytes(
            bytes(self._read_byte_unchecked(addr + i) for i in range(2)), "little"
        )

    def read_word(self, addr: int) -> int:
        addr = self._check("read [word]", addr, 4)
        return int.from_bytes(
            bytes(self._read_byte_unchecked(addr + i) for i in range(4)), "little"
        )

    def write_byte(self, addr: int, value: int) -> None:
        addr = self._check("write [byte]", addr, 1)
        self._write_byte_unchecked(addr, value & 0xFF)

    def write_hword(self, addr: int, value: int) -> None:
        addr = self._check("write [hword]", addr, 2)
        for i, byte in enumerate((value & 0xFFFF).to_bytes(2, "little")):
            self._write_byte_unchecked(addr + i, byte)

    def write_word(self, addr: int, value: int) -> None:
        addr = self._check("write [word]", addr, 4)
        for i, byte in enumerate((value & _U32).to_bytes(4, "little")):
            self._write_byte_unchecked(addr + i, byte)

    def mallocate(self, pid: int, size: int) -> int:
        """Give `pid` the best-fitting free block of `size` bytes; return its start."""
        if size > _U32:
            raise AllocationError("mallocate: size too large [4GB limit]")
        if size <= 0:
            raise AllocationError("mallocate: size must be positive")

        candidates = [
            (b.size, i)
            for i, b in enumerate(self._blocks)
            if b.is_free and size <= b.size < _U32
        ]
        if not candidates:
            raise AllocationError(
                f"mallocate: could not fulfill pid={pid} size={size} "
                "- not enough free space"
            )
        _, index = min(candidates)
        slot = self._blocks[index]
        new_end = slot.start_addr + size - 1

        if new_end < slot.end_addr:
            if len(self._blocks) + 1 > MAX_MEM_BLOCKS:
                raise AllocationError("mallocate: memtable capacity reached")
            remainder = MemoryBlock(NO_PID, new_end + 1, slot.end_addr, True)
            self._blocks.insert(index + 1, remainder)

        allocated = MemoryBlock(pid, slot.start_addr, new_end, False)
        self._blocks[index] = allocated
        _log.info(
            "mallocate: PID %d allocated %d bytes [%d -> %d]",
            pid, size, allocated.start_addr, allocated.end_addr,
        )
        return allocated.start_addr

    def liberate(self, pid: int) -> None:
        """Free the first block owned by `pid` and merge it with free neighbours."""
        index = next(
            (i for i, b in enumerate(self._blocks) if not b.is_free and b.pid == pid),
            None,
        )
        if index is None:
            raise AllocationError(f"liberate: pid {pid} not found")

        block = replace(self._blocks[index], pid=NO_PID, is_free=True)
        self._blocks[index] = block
        _log.info(
            "liberate: freed pid %d [%d -> %d]", pid, block.start_addr, block.end_addr
        )

        if index > 0 and self._blocks[index - 1].is_free:
            previous = self._blocks[index - 1]
            self._blocks[index - 1] = replace(previous, end_addr=block.end_addr)
            del self._blocks[index]
            index -= 1

        if index + 1 < len(self._blocks) and self._blocks[index + 1].is_free:
            following = self._blocks[index + 1]
            self._blocks[index] = replace(
                self._blocks[index], end_addr=following.end_addr
            )
            del self._blocks[index + 1]

    def memory_blocks(self) -> tuple[MemoryBlock, ...]:
        """The block table, in address order."""
        return tuple(self._blocks)

    def cache_stats(self) -> CacheStats:
        return CacheStats(
            self._l1_hits, self._l1_misses, self._l2_hits, self._l2_misses
        )

    def format_cache_stats(self) -> str:
        stats = self.cache_stats()
        return (
            "\nCache statistics:\n"
            f"L1 hits:   {stats.l1_hits}\n"
            f"L1 misses: {stats.l1_misses}\n"
            f"L2 hits:   {stats.l2_hits}\n"
            f"L2 misses: {stats.l2_misses}\n"
        )