"""The processor: register file and the fetch-execute cycle."""

from __future__ import annotations

import logging

from simos.isa import (
    CPU_HALT,
    Flag,
    HwRegister,
    Register,
    execute_instruction,
)
from simos.memory import Memory

_log = logging.getLogger(__name__)

_U32 = 0xFFFFFFFF


class Cpu:
    """A 32-register processor that executes instructions from a Memory."""

    def __init__(self, memory: Memory, entry_point: int = 0) -> None:
        self.memory = memory
        self.gp_registers = [0] * len(Register)
        self.hw_registers = [0] * len(HwRegister)
        self.hw_registers[HwRegister.PC] = entry_point & _U32
        self.hw_registers[HwRegister.IR] = _U32
        self.hw_registers[HwRegister.FLAGS] = int(Flag.ZERO)
        _log.debug("initialized the cpu\n%s", self.format_state())

    def read_gpr(self, reg: int) -> int:
        """Unsigned value of a general purpose register; $zero always reads 0."""
        index = reg & 0x1F
        if index == Register.ZERO:
            return 0
        return self.gp_registers[index]

    def write_gpr(self, reg: int, value: int) -> None:
        """Store the low 32 bits of `value`; writes to $zero are ignored."""
        index = reg & 0x1F
        if index == Register.ZERO:
            return
        self.gp_registers[index] = value & _U32

    def has_flag(self, flag: Flag) -> bool:
        return bool(self.hw_registers[HwRegister.FLAGS] & flag)

    def fetch(self) -> None:
        """Load the word at PC into IR and advance PC."""
        pc = self.hw_registers[HwRegister.PC]
        self.hw_registers[HwRegister.IR] = self.memory.read_word(pc)
        self.hw_registers[HwRegister.PC] = (pc + 4) & _U32

    def execute(self) -> None:
        """Execute the instruction held in IR."""
        execute_instruction(self, self.hw_registers[HwRegister.IR])

    def run(self, max_cycles: int | None = None) -> int:
        """Run until the CPU halts or `max_cycles` is reached; return cycles run."""
        cycles = 0
        while self.hw_registers[HwRegister.PC] != CPU_HALT:
            if max_cycles is not None and cycles >= max_cycles:
                break
            self.fetch()
            self.execute()
            cycles += 1
            _log.debug("=== Cycle %d ===\n%s", cycles, self.format_state())
        return cycles

    def format_state(self) -> str:
        flags = self.hw_registers[HwRegister.FLAGS]
        return (
            "CPU STATE\n"
            f"PC:  {self.hw_registers[HwRegister.PC]:X}\n"
            f"IR:  {self.hw_registers[HwRegister.IR]:X}\n"
            "FLAGS:\n"
            f"  ZERO:      {int(bool(flags & Flag.ZERO))}\n"
            f"  OVERFLOW:  {int(bool(flags & Flag.OVERFLOW))}\n"
            f"  CARRY:     {int(bool(flags & Flag.CARRY))}\n"
        )