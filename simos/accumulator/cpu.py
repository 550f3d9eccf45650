"""Accumulator processor: flags, instruction decoding and the fetch-execute cycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import TYPE_CHECKING

from simos.accumulator.memory import Memory, to_word

if TYPE_CHECKING:
    from simos.accumulator.interrupts import InterruptController

_log = logging.getLogger(__name__)

CPU_HALT = to_word(0xFFFF)
EMPTY_REG = -1

_OPCODE_MASK = 0xF000
_OPERAND_MASK = 0x0FFF


class Op(IntEnum):
    """Operations encoded in the top four bits of an instruction."""

    LOAD = 0x1
    STORE = 0x2
    ADD = 0x5
    SUB = 0x6
    INTR = 0x9
    ENDINT = 0xA
    HALT = 0xF


@dataclass
class Flags:
    """Status flags of the processor."""

    zero: bool = False
    carry: bool = False
    overflow: bool = False
    interrupt: bool = False


@dataclass(frozen=True)
class Decoded:
    """An instruction split into its operation and its 12-bit operand."""

    op: Op | int
    addr: int


def decode(instruction: int) -> Decoded:
    """Split a 16-bit instruction; unknown opcodes are kept as plain ints."""
    raw = instruction & 0xFFFF
    code = (raw & _OPCODE_MASK) >> 12
    try:
        op: Op | int = Op(code)
    except ValueError:
        op = code
    return Decoded(op, raw & _OPERAND_MASK)


@dataclass(frozen=True)
class _CpuState:
    pc: int
    acc: int
    ir: int
    flags: Flags


def _hex(value: int) -> str:
    return f"{value & 0xFFFFFFFF:X}"


class Cpu:
    """A single-accumulator processor reading instructions from word memory."""

    def __init__(self, memory: Memory) -> None:
        self.memory = memory
        self.pc = 0
        self.acc = 0
        self.ir = EMPTY_REG
        self.flags = Flags()
        _log.debug("initialized the cpu\n%s", self.format_state())

    # ---------------------------------------------------------------- flags

    def set_zero_flag(self, value: int) -> None:
        self.flags.zero = to_word(value) == 0

    def set_add_flags(self, a: int, b: int, r: int) -> None:
        """Set carry, overflow and zero for the sum a + b = r."""
        a, b, r = to_word(a), to_word(b), to_word(r)
        self.flags.carry = (a & 0xFFFF) + (b & 0xFFFF) > 0xFFFF
        self.flags.overflow = (a >= 0 and b >= 0 and r < 0) or (
            a < 0 and b < 0 and r >= 0
        )
        self.set_zero_flag(r)

    def set_sub_flags(self, a: int, b: int, r: int) -> None:
        """Set carry (borrow), overflow and zero for the difference a - b = r."""
        a, b, r = to_word(a), to_word(b), to_word(r)
        self.flags.carry = (a & 0xFFFF) < (b & 0xFFFF)
        self.flags.overflow = (a >= 0 and b < 0 and r < 0) or (
            a < 0 and b >= 0 and r >= 0
        )
        self.set_zero_flag(r)

    def set_interrupt_flag(self, enabled: bool) -> None:
        self.flags.interrupt = bool(enabled)

    # ---------------------------------------------------------------- cycle

    def fetch(self) -> None:
        """Load the word at PC into IR and advance PC."""
        self.ir = self.memory.read(self.pc)
        self.pc = to_word(self.pc + 1)

    def execute(self) -> None:
        """Execute the instruction held in IR."""
        decoded = decode(self.ir)
        self.execute_instruction(decoded.op, decoded.addr)

    def execute_instruction(self, op: Op | int, operand: int) -> None:
        """Carry out one operation; an unknown operation halts the processor."""
        operand &= 0xFFFF
        if op == Op.LOAD:
            self.acc = self.memory.read(operand)
            self.set_zero_flag(self.acc)
        elif op == Op.STORE:
            self.memory.write(operand, self.acc)
        elif op == Op.ADD:
            before = self.acc
            self.acc = to_word(before + operand)
            self.set_add_flags(before, operand, self.acc)
        elif op == Op.SUB:
            before = self.acc
            self.acc = to_word(before - operand)
            self.set_sub_flags(before, operand, self.acc)
        elif op == Op.INTR:
            self.set_interrupt_flag(bool(operand))
        elif op == Op.HALT:
            _log.info("HALT")
            self.pc = CPU_HALT
        else:
            _log.error("Invalid opcode %d (IR=0x%04X)", int(op), operand)
            self.pc = CPU_HALT

    def run(
        self, program_size: int, controller: InterruptController | None = None
    ) -> int:
        """Run up to `program_size` cycles or until halted; return cycles run."""
        cycles = 0
        while cycles < program_size and self.pc != CPU_HALT:
            self.fetch()
            self.execute()
            if controller is not None:
                controller.check()
            cycles += 1
            _log.debug("=== Cycle %d ===\n%s", cycles, self.format_state())
        return cycles

    # ---------------------------------------------------------------- state

    def snapshot(self) -> _CpuState:
        """A copy of the registers and flags."""
        return _CpuState(self.pc, self.acc, self.ir, replace(self.flags))

    def restore(self, state: _CpuState) -> None:
        """Put back registers and flags saved by snapshot()."""
        self.pc = state.pc
        self.acc = state.acc
        self.ir = state.ir
        self.flags = replace(state.flags)

    def format_state(self) -> str:
        flags = self.flags
        return (
            "CPU STATE\n"
            f"PC:  {_hex(self.pc)}\n"
            f"ACC: {_hex(self.acc)}\n"
            f"IR:  {_hex(self.ir)}\n"
            "FLAGS:\n"
            f"  ZERO:      {int(flags.zero)}\n"
            f"  CARRY:     {int(flags.carry)}\n"
            f"  OVERFLOW:  {int(flags.overflow)}\n"
            f"  INTERRUPT: {int(flags.interrupt)}\n"
        )