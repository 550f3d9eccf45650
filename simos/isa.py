"""Instruction set of the simulated MIPS-like processor: decoding and execution."""

from __future__ import annotations

import logging
from enum import IntEnum, IntFlag
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from simos.cpu import Cpu

_log = logging.getLogger(__name__)

CPU_HALT = 0xFFFFFFFF

OPCODE_SHIFT = 26
RS_SHIFT = 21
RT_SHIFT = 16
RD_SHIFT = 11
SHAMT_SHIFT = 6
FIELD_MASK = 0x1F
FUNCT_MASK = 0x3F

_U32 = 0xFFFFFFFF
_INT32_MIN = -(1 << 31)
_INT32_MAX = (1 << 31) - 1


class Register(IntEnum):
    """General purpose registers."""

    ZERO = 0
    AT = 1
    V0 = 2
    V1 = 3
    A0 = 4
    A1 = 5
    A2 = 6
    A3 = 7
    T0 = 8
    T1 = 9
    T2 = 10
    T3 = 11
    T4 = 12
    T5 = 13
    T6 = 14
    T7 = 15
    S0 = 16
    S1 = 17
    S2 = 18
    S3 = 19
    S4 = 20
    S5 = 21
    S6 = 22
    S7 = 23
    T8 = 24
    T9 = 25
    K0 = 26
    K1 = 27
    GP = 28
    SP = 29
    FP = 30
    RA = 31


class HwRegister(IntEnum):
    """Hardware registers of the processor."""

    PC = 0
    IR = 1
    MAR = 2
    MBR = 3
    IO_AR = 4
    IO_BR = 5
    FLAGS = 6
    HI = 7
    LO = 8


class Flag(IntFlag):
    """Bits of the FLAGS register."""

    ZERO = 1 << 0
    OVERFLOW = 1 << 1
    CARRY = 1 << 2


class Opcode(IntEnum):
    """Primary opcodes (bits 31..26)."""

    SPECIAL = 0x00
    J = 0x02
    JAL = 0x03
    BEQ = 0x04
    BNE = 0x05
    ADDI = 0x08
    ADDIU = 0x09
    SLTI = 0x0A
    SLTIU = 0x0B
    ANDI = 0x0C
    ORI = 0x0D
    XORI = 0x0E
    LUI = 0x0F
    ERET = 0x10
    LB = 0x20
    LH = 0x21
    LW = 0x23
    LBU = 0x24
    LHU = 0x25
    SB = 0x28
    SH = 0x29
    SW = 0x2B


class Funct(IntEnum):
    """Function codes of the R-type instructions (bits 5..0)."""

    SLL = 0x00
    SRL = 0x02
    SRA = 0x03
    SLLV = 0x04
    SRLV = 0x06
    SRAV = 0x07
    JR = 0x08
    JALR = 0x09
    SYSCALL = 0x0C
    BREAK = 0x0D
    MFHI = 0x10
    MTHI = 0x11
    MFLO = 0x12
    MTLO = 0x13
    MULT = 0x18
    MULTU = 0x19
    DIV = 0x1A
    DIVU = 0x1B
    ADD = 0x20
    ADDU = 0x21
    SUB = 0x22
    SUBU = 0x23
    AND = 0x24
    OR = 0x25
    XOR = 0x26
    NOR = 0x27


def sign_extend(value: int, bits: int) -> int:
    """Interpret the low `bits` bits of `value` as a two's complement number."""
    if bits <= 0:
        return 0
    bits = min(bits, 32)
    value &= (1 << bits) - 1
    sign = 1 << (bits - 1)
    return (value ^ sign) - sign


def zero_extend(value: int, bits: int) -> int:
    """Keep only the low `bits` bits of `value`."""
    if bits >= 32:
        return value & _U32
    return value & ((1 << bits) - 1)


def _signed(value: int) -> int:
    return sign_extend(value, 32)


def _fits_int32(value: int) -> bool:
    return _INT32_MIN <= value <= _INT32_MAX


# ------------------------------------------------------------------ flags


def _set_flags(cpu: Cpu, *, carry: bool, overflow: bool, result: int) -> None:
    flags = cpu.hw_registers[HwRegister.FLAGS]
    flags &= ~(Flag.CARRY | Flag.OVERFLOW | Flag.ZERO)
    if carry:
        flags |= Flag.CARRY
    if overflow:
        flags |= Flag.OVERFLOW
    if result == 0:
        flags |= Flag.ZERO
    cpu.hw_registers[HwRegister.FLAGS] = int(flags) & _U32


def _add_and_flag(cpu: Cpu, dest: int, lhs: int, rhs: int) -> None:
    lhs &= _U32
    rhs &= _U32
    result = (lhs + rhs) & _U32
    cpu.write_gpr(dest, result)
    _set_flags(
        cpu,
        carry=lhs + rhs > _U32,
        overflow=not _fits_int32(_signed(lhs) + _signed(rhs)),
        result=result,
    )


def _sub_and_flag(cpu: Cpu, dest: int, lhs: int, rhs: int) -> None:
    result = (lhs - rhs) & _U32
    cpu.write_gpr(dest, result)
    _set_flags(
        cpu,
        carry=lhs < rhs,
        overflow=not _fits_int32(_signed(lhs) - _signed(rhs)),
        result=result,
    )


# --------------------------------------------------------------- R type


def _mult(cpu: Cpu, rs: int, rt: int) -> None:
    product = _signed(cpu.read_gpr(rs)) * _signed(cpu.read_gpr(rt))
    hi = (product >> 32) & _U32
    lo = product & _U32
    cpu.hw_registers[HwRegister.HI] = hi
    cpu.hw_registers[HwRegister.LO] = lo
    _set_flags(cpu, carry=hi != 0, overflow=not _fits_int32(product), result=lo)


def _multu(cpu: Cpu, rs: int, rt: int) -> None:
    product = cpu.read_gpr(rs) * cpu.read_gpr(rt)
    hi = (product >> 32) & _U32
    lo = product & _U32
    cpu.hw_registers[HwRegister.HI] = hi
    cpu.hw_registers[HwRegister.LO] = lo
    _set_flags(cpu, carry=hi != 0, overflow=False, result=lo)


def _div(cpu: Cpu, rs: int, rt: int) -> None:
    divisor = _signed(cpu.read_gpr(rt))
    if divisor == 0:
        return
    dividend = _signed(cpu.read_gpr(rs))
    overflow = dividend == _INT32_MIN and divisor == -1
    if overflow:
        quotient, remainder = _INT32_MIN, 0
    else:
        quotient = abs(dividend) // abs(divisor)
        if (dividend < 0) != (divisor < 0):
            quotient = -quotient
        remainder = dividend - quotient * divisor
    cpu.hw_registers[HwRegister.LO] = quotient & _U32
    cpu.hw_registers[HwRegister.HI] = remainder & _U32
    _set_flags(cpu, carry=False, overflow=overflow, result=quotient & _U32)


def _divu(cpu: Cpu, rs: int, rt: int) -> None:
    divisor = cpu.read_gpr(rt)
    if divisor == 0:
        return
    dividend = cpu.read_gpr(rs)
    quotient, remainder = divmod(dividend, divisor)
    cpu.hw_registers[HwRegister.LO] = quotient
    cpu.hw_registers[HwRegister.HI] = remainder
    _set_flags(cpu, carry=False, overflow=False, result=quotient)


def _jalr(cpu: Cpu, rs: int, rd: int) -> None:
    target = cpu.read_gpr(rs)
    cpu.write_gpr(rd, cpu.hw_registers[HwRegister.PC])
    cpu.hw_registers[HwRegister.PC] = target


def _halt(cpu: Cpu) -> None:
    cpu.hw_registers[HwRegister.PC] = CPU_HALT


def _set_hw(cpu: Cpu, register: HwRegister, value: int) -> None:
    cpu.hw_registers[register] = value & _U32


_RType = Callable[["Cpu", int, int, int, int], None]

_R_TYPE: dict[int, _RType] = {
    Funct.ADD: lambda c, rs, rt, rd, sh: _add_and_flag(c, rd, c.read_gpr(rs), c.read_gpr(rt)),
    Funct.ADDU: lambda c, rs, rt, rd, sh: _add_and_flag(c, rd, c.read_gpr(rs), c.read_gpr(rt)),
    Funct.SUB: lambda c, rs, rt, rd, sh: _sub_and_flag(c, rd, c.read_gpr(rs), c.read_gpr(rt)),
    Funct.SUBU: lambda c, rs, rt, rd, sh: _sub_and_flag(c, rd, c.read_gpr(rs), c.read_gpr(rt)),
    Funct.MULT: lambda c, rs, rt, rd, sh: _mult(c, rs, rt),
    Funct.MULTU: lambda c, rs, rt, rd, sh: _multu(c, rs, rt),
    Funct.DIV: lambda c, rs, rt, rd, sh: _div(c, rs, rt),
    Funct.DIVU: lambda c, rs, rt, rd, sh: _divu(c, rs, rt),
    Funct.MFHI: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.hw_registers[HwRegister.HI]),
    Funct.MFLO: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.hw_registers[HwRegister.LO]),
    Funct.MTHI: lambda c, rs, rt, rd, sh: _set_hw(c, HwRegister.HI, c.read_gpr(rs)),
    Funct.MTLO: lambda c, rs, rt, rd, sh: _set_hw(c, HwRegister.LO, c.read_gpr(rs)),
    Funct.AND: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.read_gpr(rs) & c.read_gpr(rt)),
    Funct.OR: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.read_gpr(rs) | c.read_gpr(rt)),
    Funct.XOR: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.read_gpr(rs) ^ c.read_gpr(rt)),
    Funct.NOR: lambda c, rs, rt, rd, sh: c.write_gpr(rd, ~(c.read_gpr(rs) | c.read_gpr(rt))),
    Funct.SLL: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.read_gpr(rt) << (sh & 0x1F)),
    Funct.SRL: lambda c, rs, rt, rd, sh: c.write_gpr(rd, c.read_gpr(rt) >> (sh & 0x1F)),
    Funct.SRA: lambda c, rs, rt, rd, sh: c.write_gpr(rd, _signed(c.read_gpr(rt)) >> (sh & 0x1F)),
    Funct.SLLV: lambda c, rs, rt, rd, sh: c.write_gpr(
        rd, c.read_gpr(rt) << (c.read_gpr(rs) & 0x1F)
    ),
    Funct.SRLV: lambda c, rs, rt, rd, sh: c.write_gpr(
        rd, c.read_gpr(rt) >> (c.read_gpr(rs) & 0x1F)
    ),
    Funct.SRAV: lambda c, rs, rt, rd, sh: c.write_gpr(
        rd, _signed(c.read_gpr(rt)) >> (c.read_gpr(rs) & 0x1F)
    ),
    Funct.JR: lambda c, rs, rt, rd, sh: _set_hw(c, HwRegister.PC, c.read_gpr(rs)),
    Funct.JALR: lambda c, rs, rt, rd, sh: _jalr(c, rs, rd),
    Funct.SYSCALL: lambda c, rs, rt, rd, sh: _halt(c),
    Funct.BREAK: lambda c, rs, rt, rd, sh: _halt(c),
}


def _fields(instruction: int) -> tuple[int, int, int, int, int]:
    return (
        (instruction >> RS_SHIFT) & FIELD_MASK,
        (instruction >> RT_SHIFT) & FIELD_MASK,
        (instruction >> RD_SHIFT) & FIELD_MASK,
        (instruction >> SHAMT_SHIFT) & FIELD_MASK,
        instruction & FUNCT_MASK,
    )


def _execute_r_type(cpu: Cpu, instruction: int) -> None:
    rs, rt, rd, shamt, funct = _fields(instruction)
    handler = _R_TYPE.get(funct)
    if handler is not None:
        handler(cpu, rs, rt, rd, shamt)


# --------------------------------------------------------------- I type

_IType = Callable[["Cpu", int, int, int], None]

_IMMEDIATE: dict[int, _IType] = {
    Opcode.ADDI: lambda c, rs, rt, imm: _add_and_flag(c, rt, c.read_gpr(rs), sign_extend(imm, 16)),
    Opcode.ADDIU: lambda c, rs, rt, imm: _add_and_flag(c, rt, c.read_gpr(rs), sign_extend(imm, 16)),
    Opcode.ANDI: lambda c, rs, rt, imm: c.write_gpr(rt, c.read_gpr(rs) & zero_extend(imm, 16)),
    Opcode.ORI: lambda c, rs, rt, imm: c.write_gpr(rt, c.read_gpr(rs) | zero_extend(imm, 16)),
    Opcode.XORI: lambda c, rs, rt, imm: c.write_gpr(rt, c.read_gpr(rs) ^ zero_extend(imm, 16)),
    Opcode.SLTI: lambda c, rs, rt, imm: c.write_gpr(
        rt, int(_signed(c.read_gpr(rs)) < sign_extend(imm, 16))
    ),
    Opcode.SLTIU: lambda c, rs, rt, imm: c.write_gpr(
        rt, int(c.read_gpr(rs) < (sign_extend(imm, 16) & _U32))
    ),
    Opcode.LUI: lambda c, rs, rt, imm: c.write_gpr(rt, zero_extend(imm, 16) << 16),
}

_Access = Callable[["Cpu", int, int], None]

_MEMORY: dict[int, _Access] = {
    Opcode.LW: lambda c, rt, addr: c.write_gpr(rt, c.memory.read_word(addr)),
    Opcode.LB: lambda c, rt, addr: c.write_gpr(rt, sign_extend(c.memory.read_byte(addr), 8)),
    Opcode.LBU: lambda c, rt, addr: c.write_gpr(rt, zero_extend(c.memory.read_byte(addr), 8)),
    Opcode.LH: lambda c, rt, addr: c.write_gpr(rt, sign_extend(c.memory.read_hword(addr), 16)),
    Opcode.LHU: lambda c, rt, addr: c.write_gpr(rt, zero_extend(c.memory.read_hword(addr), 16)),
    Opcode.SW: lambda c, rt, addr: c.memory.write_word(addr, c.read_gpr(rt)),
    Opcode.SB: lambda c, rt, addr: c.memory.write_byte(addr, c.read_gpr(rt) & 0xFF),
    Opcode.SH: lambda c, rt, addr: c.memory.write_hword(addr, c.read_gpr(rt) & 0xFFFF),
}


def _branch(cpu: Cpu, offset: int) -> None:
    pc = cpu.hw_registers[HwRegister.PC]
    cpu.hw_registers[HwRegister.PC] = (pc + 4 + (offset << 2)) & _U32


def _execute_immediate(cpu: Cpu, instruction: int) -> bool:
    opcode = instruction >> OPCODE_SHIFT
    rs = (instruction >> RS_SHIFT) & FIELD_MASK
    rt = (instruction >> RT_SHIFT) & FIELD_MASK
    imm = instruction & 0xFFFF

    arithmetic = _IMMEDIATE.get(opcode)
    if arithmetic is not None:
        arithmetic(cpu, rs, rt, imm)
        return True

    offset = sign_extend(imm, 16)
    access = _MEMORY.get(opcode)
    if access is not None:
        access(cpu, rt, (cpu.read_gpr(rs) + offset) & _U32)
        return True

    if opcode == Opcode.BEQ:
        if cpu.read_gpr(rs) == cpu.read_gpr(rt):
            _branch(cpu, offset)
        return True
    if opcode == Opcode.BNE:
        if cpu.read_gpr(rs) != cpu.read_gpr(rt):
            _branch(cpu, offset)
        return True
    return False


# --------------------------------------------------------------- J type


def _jump_target(cpu: Cpu, target: int) -> int:
    upper = (cpu.hw_registers[HwRegister.PC] + 4) & 0xF0000000
    return upper | ((target & 0x03FFFFFF) << 2)


def _execute_jump(cpu: Cpu, instruction: int) -> bool:
    opcode = instruction >> OPCODE_SHIFT
    target = instruction & 0x01FFFFFF
    if opcode == Opcode.J:
        cpu.hw_registers[HwRegister.PC] = _jump_target(cpu, target)
        return True
    if opcode == Opcode.JAL:
        cpu.write_gpr(Register.RA, cpu.hw_registers[HwRegister.PC] + 4)
        cpu.hw_registers[HwRegister.PC] = _jump_target(cpu, target)
        return True
    return False


def _is_eret(instruction: int) -> bool:
    rs, rt, rd, shamt, funct = _fields(instruction)
    return (
        instruction >> OPCODE_SHIFT == Opcode.ERET
        and rs == 0x10
        and funct == 0x18
        and not (rt or rd or shamt)
    )


def execute_instruction(cpu: Cpu, instruction: int) -> None:
    """Execute one encoded instruction against `cpu` and its memory."""
    instruction &= _U32
    opcode = instruction >> OPCODE_SHIFT
    if opcode == Opcode.SPECIAL:
        _execute_r_type(cpu, instruction)
        return
    if _execute_immediate(cpu, instruction):
        return
    if _execute_jump(cpu, instruction):
        return
    if _is_eret(instruction):
        return
    _log.error("invalid opcode %u (IR=0x%04X)", opcode, instruction)
    _halt(cpu)