"""Demonstration run of the accumulator machine with interrupts and DMA."""

from __future__ import annotations

import sys
from typing import Sequence

from simos.accumulator.cpu import Cpu
from simos.accumulator.dma import initiate_dma
from simos.accumulator.interrupts import InterruptController, Irq
from simos.accumulator.memory import Memory

_RESULT_ADDR = 0x000C
_MAX_CYCLES = 20


def main(argv: Sequence[str] | None = None) -> int:
    """Load a small program, run it, and print the resulting state."""
    memory = Memory()
    cpu = Cpu(memory)
    controller = InterruptController(cpu)

    memory.write(0x0100, 0x0100)

    memory.write(0x0, 0x5001)
    memory.write(0x1, 0x5002)
    memory.write(0x2, 0x5003)

    initiate_dma(memory.ram, memory.hdd, 100)

    memory.write(0x3, 0x5004)
    memory.write(0x4, 0x6004)
    memory.write(0x5, 0x6003)

    controller.add(Irq.SAY_HI, 5)

    memory.write(0x6, 0x6002)
    memory.write(0x7, 0x6001)

    initiate_dma(memory.hdd, memory.ssd, 25)

    memory.write(0x8, 0x1100)
    memory.write(0x9, 0x5050)

    initiate_dma(memory.ram, memory.ssd, 50)

    memory.write(0xA, 0x200C)

    controller.add(Irq.SAY_GOODBYE, 1)

    initiate_dma(memory.ssd, memory.hdd, 200)

    memory.write(0xB, 0xF000)

    cycles = cpu.run(_MAX_CYCLES, controller)

    print(f"Ran {cycles} cycles")
    for interrupt in controller.handled:
        print(f"Handled interrupt irq={interrupt.irq} priority={interrupt.priority}")
    print(cpu.format_state())
    print(memory.format_cache_stats(), end="")
    saved = memory.read(_RESULT_ADDR)
    print(f"saved memory value == {saved & 0xFFFFFFFF:X}")
    return 0


if __name__ == "__main__":
    sys.exit(main())