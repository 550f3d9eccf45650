"""Encoding of single assembly lines into machine words, and the symbol table."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Iterator

from simos.isa import Funct, Register

_log = logging.getLogger(__name__)

MAX_SYMBOLS = 1024
MAX_SYMBOL_NAME = 63

_U32 = 0xFFFFFFFF
_LONG_MIN = -(1 << 63)
_LONG_MAX = (1 << 63) - 1
_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_DELIMITERS = re.compile(r"[ \t,()]+")
_LEADING_DIGITS = re.compile(r"\d+")

_REGISTER_NAMES = {f"${reg.name.lower()}": int(reg) for reg in Register}

_R_FUNCTS = {funct.name.lower(): int(funct) for funct in Funct} | {
    "slt": 0x2A,
    "sltu": 0x2B,
}

_I_OPCODES = {
    "addi": 0x08,
    "addiu": 0x09,
    "andi": 0x0C,
    "ori": 0x0D,
    "xori": 0x0E,
    "lui": 0x0F,
    "slti": 0x0A,
    "sltiu": 0x0B,
    "beq": 0x04,
    "bne": 0x05,
    "blez": 0x06,
    "bgtz": 0x07,
    "lb": 0x20,
    "lh": 0x21,
    "lw": 0x23,
    "lbu": 0x24,
    "lhu": 0x25,
    "sb": 0x28,
    "sh": 0x29,
    "sw": 0x2B,
}

_R_ARITHMETIC = frozenset(
    {"add", "addu", "sub", "subu", "and", "or", "xor", "nor", "slt", "sltu"}
)
_SHIFTS = frozenset({"sll", "srl", "sra"})
_I_ARITHMETIC = frozenset({"addi", "addiu", "andi", "ori", "xori", "slti", "sltiu"})
_LOAD_STORE = frozenset({"lw", "sw", "lb", "sb", "lh", "sh", "lbu", "lhu"})
_BRANCHES = frozenset({"beq", "bne"})
_JUMPS = frozenset({"j", "jal"})

_ERET_WORD = (0x10 << 26) | (1 << 25) | 0x18


class AssemblyError(Exception):
    """A line could not be assembled."""


@dataclass(frozen=True)
class Symbol:
    """A label and the address it stands for."""

    name: str
    address: int
    is_global: bool = False
    is_procedure: bool = False


class SymbolTable:
    """Labels in definition order; redefining a label updates it in place."""

    def __init__(self) -> None:
        self._symbols: dict[str, Symbol] = {}

    def add(
        self,
        name: str,
        address: int,
        is_global: bool = False,
        is_procedure: bool = False,
    ) -> None:
        """Define or update a label; new labels beyond MAX_SYMBOLS are dropped."""
        name = name[:MAX_SYMBOL_NAME]
        address &= _U32
        existing = self._symbols.get(name)
        if existing is not None:
            self._symbols[name] = replace(
                existing,
                address=address,
                is_global=existing.is_global or bool(is_global),
                is_procedure=existing.is_procedure or bool(is_procedure),
            )
            return
        if len(self._symbols) < MAX_SYMBOLS:
            self._symbols[name] = Symbol(
                name, address, bool(is_global), bool(is_procedure)
            )

    def address_of(self, name: str) -> int | None:
        """The address of `name`, or None when it is not defined."""
        symbol = self._symbols.get(name[:MAX_SYMBOL_NAME])
        return None if symbol is None else symbol.address

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name[:MAX_SYMBOL_NAME] in self._symbols

    def __iter__(self) -> Iterator[Symbol]:
        return iter(self._symbols.values())

    def __len__(self) -> int:
        return len(self._symbols)


def _to_signed(value: int, bits: int) -> int:
    half = 1 << (bits - 1)
    return ((value + half) % (1 << bits)) - half


def _strtol(text: str, base: int) -> int:
    """Parse the longest numeric prefix of `text`, as the C library does."""
    rest = text.lstrip(" \t\n\r\f\v")
    negative = False
    if rest[:1] in ("+", "-"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if base == 16 and rest[:2].lower() == "0x" and rest[2:3].lower() in _DIGITS[:16]:
        rest = rest[2:]
    value = 0
    for char in rest:
        digit = _DIGITS.find(char.lower()) if len(char.lower()) == 1 else -1
        if digit < 0 or digit >= base:
            break
        value = value * base + digit
    if negative:
        value = -value
    return max(_LONG_MIN, min(_LONG_MAX, value))


def parse_num(text: str | None) -> int:
    """Numeric value of a binary, hex, octal or decimal literal, as a 32-bit int."""
    if not text:
        return 0
    prefix = text[:2]
    if prefix in ("0b", "0B"):
        value = _strtol(text[2:], 2)
    elif prefix in ("0x", "0X"):
        value = _strtol(text, 16)
    elif text[0] == "0" and text[1:2].isdigit():
        value = _strtol(text, 8)
    else:
        value = _strtol(text, 10)
    return _to_signed(value, 32)


def get_register(name: str | None) -> int:
    """Register number of `$name` or `$n`; raise AssemblyError if it is not one."""
    if not name or name[0] != "$":
        raise AssemblyError(f"invalid register operand: {name!r}")
    if name[1:2].isdigit():
        digits = _LEADING_DIGITS.match(name, 1)
        number = int(digits.group()) if digits else -1
        if 0 <= number <= 31:
            return number
        raise AssemblyError(f"invalid register operand: {name!r}")
    number = _REGISTER_NAMES.get(name)
    if number is None:
        raise AssemblyError(f"invalid register operand: {name!r}")
    return number


def encode_r_type(op: str, rd: int, rs: int, rt: int, shamt: int) -> int:
    """Encode a register-format instruction; unknown mnemonics get funct 0."""
    funct = _R_FUNCTS.get(op, 0)
    return ((rs << 21) | (rt << 16) | (rd << 11) | (shamt << 6) | funct) & _U32


def encode_i_type(op: str, rt: int, rs: int, imm: int) -> int:
    """Encode an immediate-format instruction; unknown mnemonics get opcode 0."""
    opcode = _I_OPCODES.get(op, 0)
    return ((opcode << 26) | (rs << 21) | (rt << 16) | (imm & 0xFFFF)) & _U32


def encode_j_type(op: str, addr: int) -> int:
    """Encode `j` (any other mnemonic encodes as `jal`) to byte address `addr`."""
    opcode = 0x02 if op == "j" else 0x03
    return ((opcode << 26) | ((addr >> 2) & 0x3FFFFFF)) & _U32


def _tokenize(text: str) -> list[str]:
    return [token for token in _DELIMITERS.split(text) if token]


def expand_pseudo(symbols: SymbolTable, op: str, operands: str) -> list[str]:
    """The real instructions a pseudo-instruction stands for, or [] if `op` is none."""
    args = [token.strip() for token in _tokenize(operands or "")][:4]

    if op == "li" and len(args) == 2:
        imm = parse_num(args[1])
        if -32768 <= imm <= 32767:
            return [f"addiu {args[0]}, $zero, {imm}"]
        return [
            f"lui {args[0]}, {(imm >> 16) & 0xFFFF}",
            f"ori {args[0]}, {args[0]}, {imm & 0xFFFF}",
        ]

    if op == "la" and len(args) == 2:
        address = symbols.address_of(args[1])
        if address is None:
            _log.warning("undefined label '%s' for la, using 0", args[1])
            address = 0
        return [
            f"lui {args[0]}, {(address >> 16) & 0xFFFF}",
            f"ori {args[0]}, {args[0]}, {address & 0xFFFF}",
        ]

    if op == "move" and len(args) == 2:
        return [f"addu {args[0]}, {args[1]}, $zero"]

    if op == "nop":
        return ["sll $zero, $zero, 0"]

    return []


def _operand(operands: list[str], index: int) -> str | None:
    return operands[index] if index < len(operands) else None


def _label_target(symbols: SymbolTable, op: str, label: str | None, pc: int) -> int:
    if label is None:
        raise AssemblyError(f"missing label for {op} at PC 0x{pc:08x}")
    target = symbols.address_of(label)
    if target is None:
        raise AssemblyError(f"undefined label '{label}' for {op} at PC 0x{pc:08x}")
    return target


def assemble_line(symbols: SymbolTable, line: str, pc: int) -> int:
    """Encode one instruction line located at `pc`.

    A pseudo-instruction encodes as the first instruction it expands to.
    Mnemonics the assembler does not handle encode as 0.
    """
    tokens = _tokenize(line)
    if not tokens:
        return 0
    op, operands = tokens[0], tokens[1:]

    expanded = expand_pseudo(symbols, op, " ".join(operands))
    if expanded:
        return assemble_line(symbols, expanded[0], pc)

    first, second, third = (_operand(operands, i) for i in range(3))

    if op in _R_ARITHMETIC:
        return encode_r_type(
            op, get_register(first), get_register(second), get_register(third), 0
        )
    if op in _SHIFTS:
        return encode_r_type(
            op, get_register(first), 0, get_register(second), parse_num(third)
        )
    if op in _I_ARITHMETIC:
        return encode_i_type(
            op,
            get_register(first),
            get_register(second),
            _to_signed(parse_num(third), 16),
        )
    if op == "lui":
        return encode_i_type(
            op, get_register(first), 0, _to_signed(parse_num(second), 16)
        )
    if op in _LOAD_STORE:
        return encode_i_type(
            op,
            get_register(first),
            get_register(third),
            _to_signed(parse_num(second), 16),
        )
    if op in _BRANCHES:
        target = _label_target(symbols, op, third, pc)
        distance = target - (pc + 4)
        words = abs(distance) // 4
        offset = -words if distance < 0 else words
        return encode_i_type(
            op, get_register(second), get_register(first), _to_signed(offset, 16)
        )
    if op in _JUMPS:
        return encode_j_type(op, _label_target(symbols, op, first, pc))
    if op == "jr":
        return encode_r_type(op, 0, get_register(first), 0, 0)
    if op in ("syscall", "break"):
        return encode_r_type(op, 0, 0, 0, 0)
    if op == "eret":
        return _ERET_WORD
    return 0