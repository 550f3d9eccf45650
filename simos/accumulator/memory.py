"""Word-addressed RAM behind two small first-in first-out caches."""

from __future__ import annotations

from dataclasses import dataclass

from simos.memory import CacheStats

L1_CACHE_SIZE = 5
L2_CACHE_SIZE = 20
RAM_SIZE = 500
SSD_SIZE = 250
HDD_SIZE = 1000

NO_VAL = -1
_ADDR_MASK = 0xFFFF


def to_word(value: int) -> int:
    """Wrap `value` to a signed 16-bit word."""
    return ((value + 0x8000) & 0xFFFF) - 0x8000


@dataclass
class _Entry:
    addr: int
    value: int


class Cache:
    """Fully associative cache of (address, value) entries, replaced in FIFO order."""

    def __init__(self, size: int = L1_CACHE_SIZE) -> None:
        if size <= 0:
            raise ValueError("cache size must be positive")
        self.size = size
        self.items: list[_Entry | None] = [None] * size
        self.front = 0
        self.count = 0

    def find(self, addr: int) -> int | None:
        """Index of the entry holding `addr`, or None when it is not cached."""
        return next(
            (i for i, entry in enumerate(self.items)
             if entry is not None and entry.addr == addr),
            None,
        )

    def update(self, addr: int, value: int) -> None:
        """Insert an entry, replacing the oldest one when the cache is full."""
        index = (self.front + self.count) % self.size
        self.items[index] = _Entry(addr, to_word(value))
        if self.count < self.size:
            self.count += 1
        else:
            self.front = (self.front + 1) % self.size


class Memory:
    """RAM with an L1 and L2 cache in front of it, plus SSD and HDD storage."""

    def __init__(
        self,
        ram_size: int = RAM_SIZE,
        l1_size: int = L1_CACHE_SIZE,
        l2_size: int = L2_CACHE_SIZE,
    ) -> None:
        self.l1 = Cache(l1_size)
        self.l2 = Cache(l2_size)
        self.ram = [NO_VAL] * ram_size
        self.ssd = [NO_VAL] * SSD_SIZE
        self.hdd = [NO_VAL] * HDD_SIZE
        self.l1_hits = self.l1_misses = 0
        self.l2_hits = self.l2_misses = 0

    def _address(self, addr: int) -> int:
        addr &= _ADDR_MASK
        if addr >= len(self.ram):
            raise IndexError(f"address 0x{addr:04X} is outside RAM")
        return addr

    def read(self, addr: int) -> int:
        """Value at `addr`, served from the caches when possible."""
        addr = self._address(addr)

        index = self.l1.find(addr)
        if index is not None:
            self.l1_hits += 1
            return self.l1.items[index].value
        self.l1_misses += 1

        index = self.l2.find(addr)
        if index is not None:
            self.l2_hits += 1
            value = self.l2.items[index].value
            self.l1.update(addr, value)
            return value
        self.l2_misses += 1

        value = self.ram[addr]
        self.l1.update(addr, value)
        self.l2.update(addr, value)
        return value

    def write(self, addr: int, value: int) -> None:
        """Store `value` in RAM and in any cache entry for `addr`."""
        addr = self._address(addr)
        value = to_word(value)
        self.ram[addr] = value
        for cache in (self.l1, self.l2):
            index = cache.find(addr)
            if index is not None:
                cache.items[index].value = value

    def cache_stats(self) -> CacheStats:
        return CacheStats(self.l1_hits, self.l1_misses, self.l2_hits, self.l2_misses)

    def format_cache_stats(self) -> str:
        return (
            "\nCache statistics:\n"
            f"L1 hits:   {self.l1_hits}\n"
            f"L1 misses: {self.l1_misses}\n"
            f"L2 hits:   {self.l2_hits}\n"
            f"L2 misses: {self.l2_misses}\n"
        )