import pytest

from simos.cpu import Cpu
from simos.encoder import (
    MAX_SYMBOLS,
    AssemblyError,
    SymbolTable,
    assemble_line,
    encode_i_type,
    encode_j_type,
    encode_r_type,
    expand_pseudo,
    get_register,
    parse_num,
)
from simos.isa import (
    CPU_HALT,
    Funct,
    HwRegister,
    Opcode,
    Register,
    execute_instruction,
    sign_extend,
)
from simos.memory import SYSTEM_PROCESS_ID, Memory

TEXT = 0x00400000


@pytest.fixture
def cpu():
    memory = Memory()
    memory.set_current_process(SYSTEM_PROCESS_ID)
    return Cpu(memory, TEXT)


@pytest.fixture
def symbols():
    return SymbolTable()


def run(cpu, symbols, line, pc=TEXT):
    execute_instruction(cpu, assemble_line(symbols, line, pc))


# ------------------------------------------------------------- parse_num


@pytest.mark.parametrize(
    "text, expected",
    [
        ("42", 42),
        ("-12", -12),
        ("0x1F", 0x1F),
        ("0XfF", 0xFF),
        ("0b101", 0b101),
        ("0B11", 0b11),
        ("017", 0o17),
        ("12abc", 12),
        (" 7", 7),
    ],
)
def test_parse_num_bases(text, expected):
    assert parse_num(text) == expected


def test_parse_num_without_digits_is_zero():
    assert parse_num("abc") == 0
    assert parse_num(None) == 0
    assert parse_num("") == 0


def test_parse_num_wraps_to_signed_32_bits():
    assert parse_num("0xFFFFFFFF") == -1


# ---------------------------------------------------------- get_register


@pytest.mark.parametrize(
    "name, expected",
    [
        ("$zero", Register.ZERO),
        ("$t0", Register.T0),
        ("$sp", Register.SP),
        ("$ra", Register.RA),
        ("$gp", Register.GP),
        ("$0", 0),
        ("$31", 31),
        ("$5", 5),
    ],
)
def test_get_register(name, expected):
    assert get_register(name) == expected


@pytest.mark.parametrize("name", ["$32", "t0", "$foo", "$", "", None])
def test_get_register_rejects_invalid(name):
    with pytest.raises(AssemblyError):
        get_register(name)


# ----------------------------------------------------------- SymbolTable


def test_symbol_table_add_and_lookup(symbols):
    symbols.add("main", TEXT)
    assert symbols.address_of("main") == TEXT
    assert len(symbols) == 1
    assert "main" in symbols


def test_symbol_table_missing_is_none(symbols):
    assert symbols.address_of("nowhere") is None
    assert "nowhere" not in symbols


def test_symbol_table_update_keeps_flags(symbols):
    symbols.add("main", 0, is_global=True)
    symbols.add("main", TEXT + 8)
    [symbol] = list(symbols)
    assert symbol.address == TEXT + 8
    assert symbol.is_global
    assert not symbol.is_procedure
    assert len(symbols) == 1


def test_symbol_table_keeps_definition_order(symbols):
    for name in ("c", "a", "b"):
        symbols.add(name, TEXT)
    assert [s.name for s in symbols] == ["c", "a", "b"]


def test_symbol_table_truncates_names(symbols):
    long_name = "x" * 100
    symbols.add(long_name, TEXT)
    assert [s.name for s in symbols] == [long_name[:63]]
    assert symbols.address_of(long_name) == TEXT


def test_symbol_table_has_a_limit(symbols):
    for i in range(MAX_SYMBOLS + 50):
        symbols.add(f"label{i}", i * 4)
    assert len(symbols) == MAX_SYMBOLS
    assert symbols.address_of(f"label{MAX_SYMBOLS + 10}") is None


# -------------------------------------------------------------- encoders


def test_encode_r_type_fields():
    word = encode_r_type("add", Register.T2, Register.T0, Register.T1, 0)
    assert word >> 26 == 0
    assert (word >> 21) & 0x1F == Register.T0
    assert (word >> 16) & 0x1F == Register.T1
    assert (word >> 11) & 0x1F == Register.T2
    assert word & 0x3F == Funct.ADD


@pytest.mark.parametrize("funct", list(Funct))
def test_encode_r_type_funct_codes(funct):
    assert encode_r_type(funct.name.lower(), 0, 0, 0, 0) == funct


def test_encode_r_type_set_less_than():
    assert encode_r_type("slt", 0, 0, 0, 0) == 0x2A
    assert encode_r_type("sltu", 0, 0, 0, 0) == 0x2B


def test_encode_r_type_unknown_op_has_zero_funct():
    assert encode_r_type("bogus", 1, 2, 3, 0) & 0x3F == 0


def test_encode_r_type_shamt():
    word = encode_r_type("sll", Register.T2, 0, Register.T1, 7)
    assert (word >> 6) & 0x1F == 7
    assert word & 0x3F == Funct.SLL


@pytest.mark.parametrize(
    "op",
    ["addi", "addiu", "andi", "ori", "xori", "lui", "slti", "sltiu",
     "beq", "bne", "lb", "lh", "lw", "lbu", "lhu", "sb", "sh", "sw"],
)
def test_encode_i_type_opcodes(op):
    assert encode_i_type(op, 0, 0, 0) >> 26 == Opcode[op.upper()]


def test_encode_i_type_branch_opcodes_from_table():
    assert encode_i_type("blez", 0, 0, 0) >> 26 == 0x06
    assert encode_i_type("bgtz", 0, 0, 0) >> 26 == 0x07


def test_encode_i_type_negative_immediate():
    word = encode_i_type("addi", Register.T1, Register.T0, -3)
    assert sign_extend(word & 0xFFFF, 16) == -3
    assert (word >> 21) & 0x1F == Register.T0
    assert (word >> 16) & 0x1F == Register.T1


def test_encode_j_type():
    word = encode_j_type("j", TEXT + 0x10)
    assert word >> 26 == Opcode.J
    assert (word & 0x03FFFFFF) << 2 == TEXT + 0x10
    assert encode_j_type("jal", TEXT) >> 26 == Opcode.JAL
    assert encode_j_type("other", TEXT) >> 26 == Opcode.JAL


# ---------------------------------------------------------- expand_pseudo


def test_li_small_expands_to_addiu(symbols):
    assert expand_pseudo(symbols, "li", "$t0, 5") == ["addiu $t0, $zero, 5"]
    assert expand_pseudo(symbols, "li", "$t0, -7") == ["addiu $t0, $zero, -7"]


@pytest.mark.parametrize("text", ["0x12345678", "0xDEADBEEF"])
def test_li_large_expansion_loads_value(cpu, symbols, text):
    lines = expand_pseudo(symbols, "li", f"$t0, {text}")
    assert len(lines) == 2
    for line in lines:
        run(cpu, symbols, line)
    assert cpu.read_gpr(Register.T0) == int(text, 16)


def test_la_loads_symbol_address(cpu, symbols):
    symbols.add("msg", 0x10010004)
    for line in expand_pseudo(symbols, "la", "$t0, msg"):
        run(cpu, symbols, line)
    assert cpu.read_gpr(Register.T0) == 0x10010004


def test_la_undefined_label_uses_zero(cpu, symbols):
    cpu.write_gpr(Register.T0, 99)
    lines = expand_pseudo(symbols, "la", "$t0, missing")
    for line in lines:
        run(cpu, symbols, line)
    assert len(lines) == 2
    assert cpu.read_gpr(Register.T0) == 0


def test_move_and_nop(symbols):
    assert expand_pseudo(symbols, "move", "$t1, $t0") == ["addu $t1, $t0, $zero"]
    assert expand_pseudo(symbols, "nop", "") == ["sll $zero, $zero, 0"]


def test_non_pseudo_expands_to_nothing(symbols):
    assert expand_pseudo(symbols, "add", "$t0, $t1, $t2") == []
    assert expand_pseudo(symbols, "li", "$t0") == []


# ---------------------------------------------------------- assemble_line


def test_addiu_executes(cpu, symbols):
    run(cpu, symbols, "addiu $t1, $zero, 5")
    assert cpu.read_gpr(Register.T1) == 5


def test_delimiters_include_parentheses(cpu, symbols):
    run(cpu, symbols, "addiu $t1,$zero,(5)")
    assert cpu.read_gpr(Register.T1) == 5


def test_li_small_executes(cpu, symbols):
    run(cpu, symbols, "li $t0, -7")
    assert sign_extend(cpu.read_gpr(Register.T0), 32) == -7


def test_li_large_encodes_only_first_instruction(cpu, symbols):
    run(cpu, symbols, "li $t0, 0x12345678")
    assert cpu.read_gpr(Register.T0) == 0x12345678 & 0xFFFF0000


def test_add_executes(cpu, symbols):
    cpu.write_gpr(Register.T0, 5)
    cpu.write_gpr(Register.T1, -3)
    run(cpu, symbols, "add $t2, $t0, $t1")
    assert cpu.read_gpr(Register.T2) == 2


def test_move_executes(cpu, symbols):
    cpu.write_gpr(Register.T0, 1234)
    run(cpu, symbols, "move $t1, $t0")
    assert cpu.read_gpr(Register.T1) == 1234


def test_slt_encoding(symbols):
    word = assemble_line(symbols, "slt $t2, $t0, $t1", TEXT)
    assert word & 0x3F == 0x2A
    assert (word >> 11) & 0x1F == Register.T2


def test_shifts_execute(cpu, symbols):
    cpu.write_gpr(Register.T1, 1)
    run(cpu, symbols, "sll $t2, $t1, 4")
    assert cpu.read_gpr(Register.T2) == 1 << 4
    cpu.write_gpr(Register.T1, 0xF0000000)
    run(cpu, symbols, "sra $t2, $t1, 4")
    assert cpu.read_gpr(Register.T2) == 0xFF000000


def test_ori_and_lui_execute(cpu, symbols):
    cpu.write_gpr(Register.T0, 0x00FF0000)
    run(cpu, symbols, "ori $t1, $t0, 0x1234")
    assert cpu.read_gpr(Register.T1) == 0x00FF1234
    run(cpu, symbols, "lui $t1, 0x1234")
    assert cpu.read_gpr(Register.T1) == 0x12340000


def test_store_and_load_word(cpu, symbols):
    cpu.write_gpr(Register.T0, 0x1000)
    cpu.write_gpr(Register.T1, 0x12345678)
    run(cpu, symbols, "sw $t1, 8($t0)")
    assert cpu.memory.read_word(0x1008) == 0x12345678
    run(cpu, symbols, "lw $t2, 8($t0)")
    assert cpu.read_gpr(Register.T2) == 0x12345678


def test_store_byte_negative_offset(cpu, symbols):
    cpu.write_gpr(Register.T0, 0x1000)
    cpu.write_gpr(Register.T1, 0x12345678)
    run(cpu, symbols, "sb $t1, -1($t0)")
    assert cpu.memory.read_byte(0x1000 - 1) == 0x12345678 & 0xFF


def test_beq_forward_offset(symbols):
    symbols.add("done", TEXT + 16)
    word = assemble_line(symbols, "beq $t0, $t1, done", TEXT)
    assert word >> 26 == Opcode.BEQ
    assert (word >> 21) & 0x1F == Register.T0
    assert (word >> 16) & 0x1F == Register.T1
    assert TEXT + 4 + sign_extend(word & 0xFFFF, 16) * 4 == TEXT + 16


def test_bne_backward_offset(symbols):
    symbols.add("loop", TEXT)
    pc = TEXT + 12
    word = assemble_line(symbols, "bne $t0, $zero, loop", pc)
    assert word >> 26 == Opcode.BNE
    assert pc + 4 + sign_extend(word & 0xFFFF, 16) * 4 == TEXT


def test_branch_offset_truncates_toward_zero(symbols):
    symbols.add("odd", TEXT + 2)
    word = assemble_line(symbols, "beq $t0, $t1, odd", TEXT)
    assert word & 0xFFFF == 0


@pytest.mark.parametrize("line", ["beq $t0, $t1", "j"])
def test_missing_label_raises(symbols, line):
    with pytest.raises(AssemblyError, match="missing label"):
        assemble_line(symbols, line, TEXT)


@pytest.mark.parametrize("line", ["beq $t0, $t1, nowhere", "jal nowhere"])
def test_undefined_label_raises(symbols, line):
    with pytest.raises(AssemblyError, match="undefined label 'nowhere'"):
        assemble_line(symbols, line, TEXT)


def test_jumps_encode_target(symbols):
    symbols.add("loop", TEXT + 8)
    word = assemble_line(symbols, "j loop", TEXT)
    assert word >> 26 == Opcode.J
    assert (word & 0x03FFFFFF) << 2 == TEXT + 8
    assert assemble_line(symbols, "jal loop", TEXT) >> 26 == Opcode.JAL


def test_jr_executes(cpu, symbols):
    cpu.write_gpr(Register.T0, TEXT + 0x100)
    run(cpu, symbols, "jr $t0")
    assert cpu.hw_registers[HwRegister.PC] == TEXT + 0x100


@pytest.mark.parametrize("line", ["syscall", "break"])
def test_syscall_and_break_halt(cpu, symbols, line):
    run(cpu, symbols, line)
    assert cpu.hw_registers[HwRegister.PC] == CPU_HALT


def test_eret_encoding(cpu, symbols):
    word = assemble_line(symbols, "eret", TEXT)
    assert word >> 26 == Opcode.ERET
    assert word & 0x3F == 0x18
    execute_instruction(cpu, word)
    assert cpu.hw_registers[HwRegister.PC] == TEXT


@pytest.mark.parametrize("line", ["", "   ", "bogus $t0", "mult $t0, $t1", "jalr $t0"])
def test_unhandled_lines_encode_as_zero(symbols, line):
    assert assemble_line(symbols, line, TEXT) == 0


@pytest.mark.parametrize("line", ["add $t0, $t9x, $t1", "jr", "addi $t0, $nope, 1"])
def test_bad_register_raises(symbols, line):
    with pytest.raises(AssemblyError, match="register"):
        assemble_line(symbols, line, TEXT)