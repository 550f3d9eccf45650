"""Priority interrupt controller for the accumulator processor."""

from __future__ import annotations

import heapq
import itertools
import logging
from dataclasses import dataclass
from enum import IntEnum

from simos.accumulator.cpu import CPU_HALT, Cpu

_log = logging.getLogger(__name__)

MAX_INTERRUPTS = 128
NO_IRQ = -1
IDLE_PRIORITY = 100000


class Irq(IntEnum):
    """Interrupt request lines."""

    SAY_HI = 0x1
    SAY_GOODBYE = 0x2
    EOI = 0x3


@dataclass(frozen=True)
class Interrupt:
    """A pending interrupt; a lower priority number is served first."""

    irq: int
    priority: int


_IDLE = Interrupt(NO_IRQ, IDLE_PRIORITY)

_MESSAGES: dict[int, str | None] = {
    Irq.SAY_HI: "INTERRUPT: hello",
    Irq.SAY_GOODBYE: "INTERRUPT: goodbye",
    Irq.EOI: None,
}


class InterruptController:
    """Queues interrupts by priority and dispatches them to their handlers."""

    def __init__(self, cpu: Cpu) -> None:
        self.cpu = cpu
        self._queue: list[tuple[int, int, Interrupt]] = []
        self._sequence = itertools.count()
        self.current = _IDLE
        self.handled: list[Interrupt] = []

    def __len__(self) -> int:
        return len(self._queue)

    def add(self, irq: int, priority: int) -> None:
        """Queue an interrupt and raise the processor's interrupt flag."""
        if len(self._queue) >= MAX_INTERRUPTS:
            raise OverflowError("interrupt queue is full")
        interrupt = Interrupt(irq, priority)
        heapq.heappush(self._queue, (priority, next(self._sequence), interrupt))
        self.cpu.set_interrupt_flag(True)

    def next_interrupt(self) -> Interrupt:
        """Remove and return the queued interrupt with the lowest priority number."""
        if not self._queue:
            raise IndexError("interrupt queue is empty")
        return heapq.heappop(self._queue)[2]

    def handle(self, interrupt: Interrupt) -> None:
        """Run the handler for `interrupt`; the processor state is restored after."""
        saved = self.cpu.snapshot()
        self.handled.append(interrupt)
        if interrupt.irq in _MESSAGES:
            message = _MESSAGES[interrupt.irq]
            if message:
                _log.info(message)
            self.cpu.set_interrupt_flag(False)
            self.current = _IDLE
        else:
            _log.error("Invalid irq -> %d <-", interrupt.irq)
            self.cpu.pc = CPU_HALT
        self.cpu.restore(saved)

    def check(self) -> None:
        """Serve one pending interrupt if the processor's interrupt flag is set."""
        if not self.cpu.flags.interrupt:
            return
        if not self._queue:
            self.cpu.set_interrupt_flag(False)
            return

        interrupt = self.next_interrupt()
        if self.current.irq == NO_IRQ or interrupt.priority < self.current.priority:
            self.current = interrupt
            self.handle(interrupt)
        else:
            self.handle(self.current)
            self.add(interrupt.irq, interrupt.priority)

        if not self._queue:
            self.cpu.set_interrupt_flag(False)