import pytest

from simos.accumulator.memory import (
    NO_VAL,
    RAM_SIZE,
    Cache,
    Memory,
    to_word,
)


@pytest.mark.parametrize("value", [0, 1, -1, 0x7FFF, -0x8000, 1234])
def test_to_word_keeps_in_range_values(value):
    assert to_word(value) == value


@pytest.mark.parametrize("value", [0, 5, 0x7FFF, -300])
def test_to_word_wraps_modulo_16_bits(value):
    assert to_word(value + 0x10000) == to_word(value)


def test_to_word_all_ones_is_minus_one():
    assert to_word(0xFFFF) == -1


def test_cache_rejects_non_positive_size():
    with pytest.raises(ValueError):
        Cache(0)


def test_cache_find_missing_is_none():
    assert Cache(3).find(7) is None


def test_cache_evicts_oldest_entry():
    cache = Cache(2)
    cache.update(1, 10)
    cache.update(2, 20)
    cache.update(3, 30)
    assert cache.find(1) is None
    assert cache.items[cache.find(2)].value == 20
    assert cache.items[cache.find(3)].value == 30
    assert cache.count == cache.size


def test_fresh_ram_reads_empty_value():
    memory = Memory()
    assert memory.read(0) == NO_VAL
    assert len(memory.ram) == RAM_SIZE


def test_write_then_read_round_trip():
    memory = Memory()
    memory.write(0x100, 0x0100)
    assert memory.read(0x100) == 0x0100
    memory.write(0x100, 0x5001)
    assert memory.read(0x100) == 0x5001


def test_write_updates_cached_value():
    memory = Memory()
    memory.write(3, 42)
    memory.read(3)
    memory.write(3, 99)
    hits_before = memory.l1_hits
    assert memory.read(3) == 99
    assert memory.l1_hits == hits_before + 1


def test_hit_and_miss_counters_are_consistent():
    memory = Memory()
    addresses = [0, 1, 2, 0, 1, 7, 8, 9, 10, 0, 2]
    for addr in addresses:
        memory.read(addr)
    stats = memory.cache_stats()
    assert stats.l1_hits + stats.l1_misses == len(addresses)
    assert stats.l2_hits + stats.l2_misses == stats.l1_misses
    assert stats.l2_misses == len(set(addresses))


def test_line_evicted_from_l1_is_served_by_l2():
    memory = Memory(l1_size=2, l2_size=8)
    for addr in (0, 1, 2):
        memory.read(addr)
    l2_hits = memory.l2_hits
    memory.read(0)
    assert memory.l2_hits == l2_hits + 1


def test_address_outside_ram_raises():
    memory = Memory(ram_size=16)
    with pytest.raises(IndexError):
        memory.read(16)
    with pytest.raises(IndexError):
        memory.write(100, 1)


def test_format_cache_stats_reports_counters():
    memory = Memory()
    memory.read(5)
    text = memory.format_cache_stats()
    assert text.startswith("\nCache statistics:\n")
    assert f"L1 misses: {memory.l1_misses}\n" in text
    assert f"L2 misses: {memory.l2_misses}\n" in text