"""Two-pass assembler that turns an assembly source file into a process image."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

from simos.encoder import AssemblyError, Symbol, SymbolTable, assemble_line, parse_num
from simos.memory import (
    DATA_BASE,
    GLOBAL_PTR,
    MAX_PROCESS_SIZE,
    STACK_TOP,
    SYSTEM_PROCESS_ID,
    TEXT_BASE,
    Memory,
    MemoryAccessError,
)

_log = logging.getLogger(__name__)

MAX_INSTRUCTIONS = 4096
MAX_DATA = 8192
MAX_PROGRAM_NAME = 255

_U32 = 0xFFFFFFFF
_C_SPACE = " \t\n\r\f\v"
_DIRECTIVE_SPLIT = re.compile(r"[ \t]+")
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0", "\\": "\\", '"': '"'}
_NAME_CHARS = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_-."
)


@dataclass(frozen=True)
class AssembledProgram:
    """The process image produced by assembling one source file."""

    entry_point: int
    text_start: int
    text_size: int
    data_start: int
    data_size: int
    stack_ptr: int
    globl_ptr: int
    program_name: str
    text: tuple[int, ...] = ()
    data: bytes = b""


@dataclass(frozen=True)
class AssemblyResult:
    """An assembled program with its symbols, or the reason assembly failed."""

    program: AssembledProgram | None
    symbols: tuple[Symbol, ...] = ()
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None and self.program is not None

    def symbol_address(self, name: str) -> int | None:
        """The address of the symbol `name`, or None when it is not defined."""
        return next((s.address for s in self.symbols if s.name == name), None)


@dataclass
class _TextEntry:
    address: int
    line: str
    line_number: int


@dataclass
class _Context:
    process_id: int
    text_base: int
    data_base: int
    current_address: int
    symbols: SymbolTable = field(default_factory=SymbolTable)
    data: bytearray = field(default_factory=bytearray)
    text: list[_TextEntry] = field(default_factory=list)
    in_data_section: bool = False
    align_mode: bool = True

    @classmethod
    def for_process(cls, process_id: int) -> _Context:
        text_base = (TEXT_BASE + process_id * MAX_PROCESS_SIZE) & _U32
        data_base = (DATA_BASE + process_id * MAX_PROCESS_SIZE) & _U32
        return cls(process_id, text_base, data_base, text_base)

    # ------------------------------------------------------------ data

    def _room(self, size: int) -> bool:
        return len(self.data) + size <= MAX_DATA

    def align(self, boundary: int) -> None:
        if self.align_mode and boundary > 0:
            mask = (1 << boundary) - 1
            aligned = min((len(self.data) + mask) & ~mask, MAX_DATA)
            self.data.extend(bytes(max(0, aligned - len(self.data))))

    def add_words(self, values: str) -> None:
        self.align(2)
        for token in _split_values(values):
            if not self._room(4):
                break
            self.data.extend((parse_num(token) & _U32).to_bytes(4, "little"))

    def add_halves(self, values: str) -> None:
        self.align(1)
        for token in _split_values(values):
            if not self._room(2):
                break
            self.data.extend((parse_num(token) & 0xFFFF).to_bytes(2, "little"))

    def add_bytes(self, values: str) -> None:
        for token in _split_values(values):
            if not self._room(1):
                break
            if len(token) >= 3 and token[0] == "'" and token[2] == "'":
                self.data.append(ord(token[1]) & 0xFF)
            else:
                self.data.append(parse_num(token) & 0xFF)

    def add_ascii(self, text: str, null_terminate: bool) -> None:
        in_string = False
        chars = iter(text)
        for char in chars:
            if not self._room(1):
                break
            if char == '"':
                in_string = not in_string
            elif in_string:
                if char == "\\":
                    escaped = next(chars, None)
                    char = "\\" if escaped is None else _ESCAPES.get(escaped, escaped)
                self.data.append(ord(char) & 0xFF)
        if null_terminate and self._room(1):
            self.data.append(0)

    def add_space(self, count: int) -> None:
        count = max(0, min(count, MAX_DATA - len(self.data)))
        self.data.extend(bytes(count))

    # ----------------------------------------------------------- parsing

    def directive(self, name: str, rest: str | None) -> None:
        if name == ".data":
            self.in_data_section = True
        elif name == ".text":
            self.in_data_section = False
            self.current_address = self.text_base
        elif name == ".globl" and rest:
            self.symbols.add(rest, 0, is_global=True)
        elif self.in_data_section and rest:
            if name == ".word":
                self.add_words(rest)
            elif name == ".half":
                self.add_halves(rest)
            elif name == ".byte":
                self.add_bytes(rest)
            elif name == ".ascii":
                self.add_ascii(rest, False)
            elif name == ".asciiz":
                self.add_ascii(rest, True)
            elif name == ".space":
                self.add_space(parse_num(rest))
            elif name == ".align":
                boundary = parse_num(rest)
                if boundary == 0:
                    self.align_mode = False
                else:
                    self.align_mode = True
                    self.align(boundary)

    def parse_line(self, raw: str, line_number: int) -> None:
        line = raw.strip(_C_SPACE)
        if not line or line.startswith("#"):
            return

        label, colon, after = line.partition(":")
        if colon:
            address = (
                self.data_base + len(self.data)
                if self.in_data_section
                else self.current_address
            )
            self.symbols.add(label.strip(_C_SPACE), address)
            line = after.strip(_C_SPACE)
            if not line or line.startswith("#"):
                return

        if line.startswith("."):
            parts = _DIRECTIVE_SPLIT.split(line, maxsplit=1)
            rest = parts[1].strip(_C_SPACE) if len(parts) > 1 else None
            self.directive(parts[0], rest or None)
            return

        if self.in_data_section:
            return
        if len(self.text) >= MAX_INSTRUCTIONS:
            raise AssemblyError(
                f"Too many instructions (max {MAX_INSTRUCTIONS}) at line {line_number}"
            )
        self.text.append(_TextEntry(self.current_address, line, line_number))
        self.current_address = (self.current_address + 4) & _U32

    # ---------------------------------------------------------- encoding

    def encode(self) -> list[int]:
        words = []
        for entry in self.text:
            try:
                words.append(assemble_line(self.symbols, entry.line, entry.address))
            except AssemblyError as exc:
                raise AssemblyError(f"line {entry.line_number}: {exc}") from exc
        return words


def _split_values(values: str) -> list[str]:
    return [t for t in (piece.strip(_C_SPACE) for piece in values.split(",")) if t]


def _program_name(filename: str) -> str:
    basename = filename.rsplit("/", 1)[-1]
    return "".join(c for c in basename if c in _NAME_CHARS)[:MAX_PROGRAM_NAME]


def _load(memory: Memory, ctx: _Context, words: list[int]) -> None:
    try:
        memory.set_current_process(ctx.process_id)
        for entry, word in zip(ctx.text, words):
            memory.write_word(entry.address, word)
        for offset, byte in enumerate(ctx.data):
            memory.write_byte((ctx.data_base + offset) & _U32, byte)
    except MemoryAccessError as exc:
        raise AssemblyError(f"Failed to write to memory: {exc}") from exc
    finally:
        memory.set_current_process(SYSTEM_PROCESS_ID)


def assemble(
    filename: str | Path, process_id: int = 0, memory: Memory | None = None
) -> AssemblyResult:
    """Assemble `filename` for `process_id`, loading it into `memory` if given.

    Raises AssemblyError when the file cannot be read, a line cannot be
    encoded, or memory rejects a write.
    """
    filename = str(filename)
    ctx = _Context.for_process(process_id)
    try:
        source = Path(filename).read_text(encoding="latin-1")
    except OSError as exc:
        raise AssemblyError(f"Failed to open file: {filename}") from exc

    for line_number, raw in enumerate(source.split("\n"), start=1):
        ctx.parse_line(raw, line_number)

    words = ctx.encode()
    if memory is not None:
        _load(memory, ctx, words)

    main_address = ctx.symbols.address_of("main")
    program = AssembledProgram(
        entry_point=ctx.text_base if main_address is None else main_address,
        text_start=ctx.text_base,
        text_size=len(ctx.text) * 4,
        data_start=ctx.data_base,
        data_size=len(ctx.data),
        stack_ptr=(STACK_TOP - process_id * MAX_PROCESS_SIZE) & _U32,
        globl_ptr=(GLOBAL_PTR + process_id * MAX_PROCESS_SIZE) & _U32,
        program_name=_program_name(filename),
        text=tuple(words),
        data=bytes(ctx.data),
    )
    return AssemblyResult(program, tuple(ctx.symbols))


def assemble_programs(
    filenames: list[str | Path], memory: Memory | None = None
) -> list[AssemblyResult]:
    """Assemble each file as its own process, numbered by position.

    Failures are returned as unsuccessful results rather than raised.
    """
    results = []
    for process_id, filename in enumerate(filenames):
        _log.info("Assembling process %d: %s", process_id, filename)
        try:
            result = assemble(filename, process_id, memory)
        except AssemblyError as exc:
            _log.info("  failed: %s", exc)
            results.append(AssemblyResult(None, (), str(exc)))
            continue
        program = result.program
        _log.info(
            "  assembled: text 0x%08x - 0x%08x (%d bytes), "
            "data 0x%08x - 0x%08x (%d bytes), entry 0x%08x",
            program.text_start, program.text_start + program.text_size,
            program.text_size, program.data_start,
            program.data_start + program.data_size, program.data_size,
            program.entry_point,
        )
        results.append(result)
    return results


def format_assembly_result(result: AssemblyResult) -> str:
    """A printable report of the process image and its symbol table."""
    if not result.success:
        return f"Assembly failed: {result.error}\n"
    program = result.program
    lines = [
        "",
        f"=== Process Image: {program.program_name} ===",
        f"Entry Point:    0x{program.entry_point:08x}",
        f"Text Segment:   0x{program.text_start:08x} - "
        f"0x{(program.text_start + program.text_size) & _U32:08x} "
        f"({program.text_size} bytes)",
        f"Data Segment:   0x{program.data_start:08x} - "
        f"0x{(program.data_start + program.data_size) & _U32:08x} "
        f"({program.data_size} bytes)",
        f"Stack Pointer:  0x{program.stack_ptr:08x}",
        f"Global Pointer: 0x{program.globl_ptr:08x}",
        "",
        f"=== Symbol Table ({len(result.symbols)} symbols) ===",
    ]
    for symbol in result.symbols:
        lines.append(
            f"{symbol.name:<30} 0x{symbol.address:08x} "
            f"{'GLOBAL ' if symbol.is_global else ''}"
            f"{'PROC' if symbol.is_procedure else ''}"
        )
    return "\n".join(lines) + "\n"