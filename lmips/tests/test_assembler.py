# lmips/tests/test_assembler.py
import pytest
# Import relative to the project root, assuming pytest runs from there
from lmips.mips_assembler import MipsAssembler, assemble
from lmips.mips_container import read_object, HEADER_SIZE, SECTION_TEXT, SECTION_STRING, SECTION_DATA
from lmips.mips_errors import OperandError, UndefinedLabelError, UnsupportedInstructionError
from lmips.mips_program import Program, Instruction

@pytest.fixture
def assembler():
    """Provides a new MipsAssembler instance for each test."""
    return MipsAssembler()

def words_for(assembler, *instructions):
    """Assembles a label-free program and returns its encoded words."""
    program = Program()
    for instr in instructions:
        program.emit(*instr)
    assembler.assemble(program)
    return assembler.machine_code

# --- Basic Instruction Tests ---

def test_assemble_addi(assembler):
    # addi: opcode=8, rs=0, rt=8, imm=100 (0x64)
    assert words_for(assembler, ("addi", "$t0", "$zero", 100)) == [0x20080064]

def test_assemble_add(assembler):
    assert words_for(assembler, ("add", "$s0", "$t1", "$t2")) == [0x012a8020]

def test_assemble_numeric_register_names(assembler):
    assert words_for(assembler, ("add", "$16", "$9", "$10")) == [0x012a8020]

def test_assemble_sll(assembler):
    assert words_for(assembler, ("sll", "$t2", "$t1", 4)) == [0x00095100]

def test_assemble_sllv(assembler):
    # sllv rd, rt, rs: rs=$t2 (10), rt=$t1 (9), rd=$t0 (8)
    assert words_for(assembler, ("sllv", "$t0", "$t1", "$t2")) == [0x01494004]

def test_assemble_mult(assembler):
    assert words_for(assembler, ("mult", "$t0", "$t1")) == [0x01090018]

def test_assemble_lb(assembler):
    # lb $s0, -4($sp)
    assert words_for(assembler, ("lb", "$s0", -4, "$sp")) == [0x83b0fffc]

def test_assemble_sw(assembler):
    # sw $a0, 16($gp)
    assert words_for(assembler, ("sw", "$a0", 16, "$gp")) == [0xae040010]

def test_assemble_lui(assembler):
    assert words_for(assembler, ("lui", "$t0", 0x1234)) == [0x3c081234]

def test_assemble_hi_lo_moves_and_syscall(assembler):
    assert words_for(
        assembler, ("mfhi", "$t0"), ("mflo", "$t0"), ("mthi", "$t0"), ("mtlo", "$t0"), ("syscall",),
    ) == [0x00004010, 0x00004012, 0x01000011, 0x01000013, 0x0000000c]

def test_assemble_jr(assembler):
    assert words_for(assembler, ("jr", "$ra")) == [0x03e00008]

def test_mnemonic_case_is_ignored(assembler):
    assert words_for(assembler, ("ADD", "$s0", "$t1", "$t2")) == [0x012a8020]

# --- Pseudo-instruction Lowering ---

def test_li_small(assembler):
    # li $t0, 42 -> addiu $t0, $zero, 42
    assert words_for(assembler, ("li", "$t0", 42)) == [0x2408002a]

def test_li_uses_zero_extending_addiu_up_to_0xffff(assembler):
    assert words_for(assembler, ("li", "$t0", 0xffff)) == [0x2408ffff]

def test_li_large(assembler):
    # lui $at, 0x1234 ; ori $t0, $at, 0x5678
    assert words_for(assembler, ("li", "$t0", 0x12345678)) == [0x3c011234, 0x34285678]

def test_li_upper_half_only(assembler):
    # lui $t0, 1
    assert words_for(assembler, ("li", "$t0", 0x10000)) == [0x3c080001]

def test_li_negative(assembler):
    assert words_for(assembler, ("li", "$t0", -1)) == [0x3c01ffff, 0x3428ffff]

def test_li_out_of_range(assembler):
    with pytest.raises(OperandError):
        words_for(assembler, ("li", "$t0", 1 << 32))

def test_register_op_with_literal_uses_at(assembler):
    # add $t0, $t1, 5 -> addiu $at, $zero, 5 ; add $t0, $t1, $at
    assert words_for(assembler, ("add", "$t0", "$t1", 5)) == [0x24010005, 0x01214020]

def test_mult_with_literal(assembler):
    # addiu $at, $zero, 3 ; mult $t0, $at
    assert words_for(assembler, ("mult", "$t0", 3)) == [0x24010003, 0x01010018]

def test_rem(assembler):
    # div $t1, $t2 ; mfhi $t0
    assert words_for(assembler, ("rem", "$t0", "$t1", "$t2")) == [0x012a001a, 0x00004010]

def test_remu(assembler):
    # divu $t1, $t2 ; mfhi $t0
    assert words_for(assembler, ("remu", "$t0", "$t1", "$t2")) == [0x012a001b, 0x00004010]

def test_neg(assembler):
    # sub $t0, $zero, $t1
    assert words_for(assembler, ("neg", "$t0", "$t1")) == [0x00094022]

def test_negu(assembler):
    assert words_for(assembler, ("negu", "$t0", "$t1")) == [0x00094023]

def test_move(assembler):
    # add $t0, $zero, $t1
    assert words_for(assembler, ("move", "$t0", "$t1")) == [0x00094020]

def test_clear_and_nop(assembler):
    assert words_for(assembler, ("clear", "$t0"), ("nop",)) == [0x00004020, 0x00000000]

def test_jalr_defaults_to_ra(assembler):
    # jalr $t1 -> jalr $ra, $t1: rs=9, rd=31
    assert words_for(assembler, ("jalr", "$t1")) == [0x0120f809]
    assert words_for(assembler, ("jalr", "$t2", "$t1")) == [0x01205009]

def test_la_uses_data_label_address(assembler):
    program = Program()
    program.directive(".word", 7)
    program.data_label("msg")
    program.directive(".asciiz", "hi")
    program.emit("la", "$t0", "msg")
    assembler.assemble(program)
    # addiu $t0, $gp, 4
    assert assembler.machine_code == [0x27880004]

@pytest.mark.parametrize("mnemonic, slt_word, branch_word", [
    ("blt", 0x0109082a, 0x1420fffe), # slt $at, $t0, $t1 ; bne $at, $zero, loop
    ("bgt", 0x0128082a, 0x1420fffe), # slt $at, $t1, $t0 ; bne
    ("ble", 0x0128082a, 0x1020fffe), # slt $at, $t1, $t0 ; beq
    ("bge", 0x0109082a, 0x1020fffe), # slt $at, $t0, $t1 ; beq
])
def test_branch_pseudo_instructions(assembler, mnemonic, slt_word, branch_word):
    program = Program()
    program.code_label("loop")
    program.emit(mnemonic, "$t0", "$t1", "loop")
    assembler.assemble(program)
    assert assembler.machine_code == [slt_word, branch_word]

def test_branch_pseudo_with_literal(assembler):
    program = Program()
    program.code_label("loop")
    program.emit("blt", "$t0", 10, "loop")
    assembler.assemble(program)
    # addiu $at, $zero, 10 ; slt $at, $t0, $at ; bne $at, $zero, loop
    assert assembler.machine_code == [0x2401000a, 0x0101082a, 0x1420fffd]

@pytest.mark.parametrize("mnemonic", ["blt", "bgt", "ble", "bge"])
def test_branch_pseudo_with_two_literals(assembler, mnemonic):
    program = Program()
    program.code_label("loop")
    program.emit(mnemonic, 1, 2, "loop")
    with pytest.raises(OperandError, match="At most one literal"):
        assembler.assemble(program)

def test_beq_with_literal(assembler):
    program = Program()
    program.emit("beq", "$t0", 3, "done")
    program.code_label("done")
    program.emit("syscall")
    assembler.assemble(program)
    # addiu $at, $zero, 3 ; beq $t0, $at, +0
    assert assembler.machine_code == [0x24010003, 0x11010000, 0x0000000c]

def test_b_lowers_to_j(assembler):
    program = Program()
    program.emit("nop")
    program.code_label("here")
    program.emit("b", "here")
    assembler.assemble(program)
    assert assembler.machine_code == [0x00000000, 0x08000001]

def test_unknown_mnemonic(assembler):
    with pytest.raises(UnsupportedInstructionError, match="frob"):
        words_for(assembler, ("frob", "$t0"))

# --- Label Resolution ---

def test_labels_use_post_expansion_addresses(assembler):
    program = Program()
    program.emit("li", "$t0", 0x12345678)     # 2 words, 0x0 and 0x4
    program.emit("beq", "$zero", "$zero", "done") # 0x8
    program.emit("nop")                        # 0xc
    program.code_label("done")
    program.emit("syscall")                    # 0x10
    assembler.assemble(program)
    assert assembler.symbol_table["done"] == 0x10
    assert assembler.instruction_starts == [0, 2, 3, 4, 5]
    assert assembler.machine_code[2] == 0x10000001 # (0x10 - 0xc) >> 2

def test_backward_branch(assembler):
    program = Program()
    program.code_label("top")
    program.emit("addi", "$t0", "$t0", -1)
    program.emit("bne", "$t0", "$zero", "top")
    assembler.assemble(program)
    # offset (0 - 8) >> 2 = -2
    assert assembler.machine_code == [0x2108ffff, 0x1500fffe]

def test_blez_bgtz(assembler):
    program = Program()
    program.code_label("top")
    program.emit("blez", "$t0", "top")
    program.emit("bgtz", "$t0", "top")
    assembler.assemble(program)
    assert assembler.machine_code == [0x1900ffff, 0x1d00fffe]

def test_jal_forward(assembler):
    program = Program()
    program.emit("jal", "func")
    program.emit("syscall")
    program.code_label("func")
    program.emit("jr", "$ra")
    assembler.assemble(program)
    assert assembler.machine_code[0] == 0x0c000002

def test_label_at_end_of_code(assembler):
    program = Program()
    program.emit("j", "end")
    program.code_label("end")
    assembler.assemble(program)
    assert assembler.machine_code == [0x08000001]

def test_undefined_label(assembler):
    program = Program()
    program.emit("j", "nowhere")
    with pytest.raises(UndefinedLabelError) as excinfo:
        assembler.assemble(program)
    assert excinfo.value.label == "nowhere"

def test_undefined_label_in_branch_and_la(assembler):
    for instr in (("beq", "$t0", "$t1", "missing"), ("la", "$t0", "missing")):
        program = Program()
        program.emit(*instr)
        with pytest.raises(UndefinedLabelError):
            assembler.assemble(program)

def test_code_label_outside_program(assembler):
    program = Program()
    program.emit("nop")
    program.add_label("bad", "code", 5)
    with pytest.raises(OperandError):
        assembler.assemble(program)

# --- Operand Errors ---

@pytest.mark.parametrize("instr", [
    ("add", "$t0", "$t1"),           # Too few operands
    ("add", "$t0", "$t99", "$t1"),   # Bad register
    ("addi", "$t0", "$t1", 70000),   # Immediate out of range
    ("addi", "$t0", "$t1", -40000),
    ("sll", "$t0", "$t1", 32),       # Shift amount out of range
    ("jr", 5),                       # Literal where a register is expected
    ("lw", "$t0", "$t1", "$t2"),     # Register where an offset is expected
    ("syscall", "$t0"),
])
def test_operand_errors(assembler, instr):
    with pytest.raises(OperandError):
        words_for(assembler, instr)

def test_unaligned_jump_target(assembler):
    with pytest.raises(OperandError, match="word-aligned"):
        words_for(assembler, ("j", 6))

def test_branch_too_far(assembler):
    program = Program()
    program.emit("beq", "$zero", "$zero", "far")
    for _ in range(1 << 15):
        program.emit("nop")
    program.code_label("far")
    program.emit("syscall")
    with pytest.raises(OperandError, match="too far"):
        assembler.assemble(program)

# --- Data Section ---

def test_data_directives(assembler):
    program = Program()
    program.directive(".word", 1, -1)
    program.directive(".half", 2)
    program.directive(".byte", 3, 0x1ff)
    program.directive(".ascii", "ab")
    program.directive(".asciiz", "hi")
    program.emit("syscall")
    obj = read_object(assembler.assemble(program))
    assert obj.data == bytes.fromhex("00000001" "ffffffff" "0002" "03" "ff" "6162" "686900")
    assert program.data_size() == len(obj.data)

def test_word_directive_with_label(assembler):
    program = Program()
    program.directive(".word", 0)
    program.data_label("ptr")
    program.directive(".word", "ptr", "main")
    program.emit("nop")
    program.code_label("main")
    program.emit("syscall")
    obj = read_object(assembler.assemble(program))
    assert obj.data == bytes.fromhex("00000000" "00000004" "00000004")

def test_non_ascii_string(assembler):
    program = Program()
    program.directive(".asciiz", "hé")
    with pytest.raises(OperandError):
        assembler.assemble(program)

@pytest.mark.parametrize("directive", [".ascii", ".asciiz"])
def test_string_directive_rejects_non_string(assembler, directive):
    program = Program()
    program.directive(directive, 5)
    program.data_label("after") # Sizing must not fail before assembly reports the error
    with pytest.raises(OperandError, match="Expected a string"):
        assembler.assemble(program)

def test_string_directive_accepts_bytes(assembler):
    program = Program()
    program.directive(".asciiz", b"ok")
    program.data_label("after")
    obj = read_object(assembler.assemble(program))
    assert obj.data == b"ok\x00"
    assert program.labels["after"].address == 3

def test_unsupported_directive(assembler):
    program = Program()
    program.directive(".float", 1)
    with pytest.raises(UnsupportedInstructionError, match=".float"):
        assembler.assemble(program)

# --- Container Output ---

def test_object_layout(assembler):
    program = Program()
    program.directive(".word", 0xdeadbeef)
    program.emit("li", "$v0", 10)
    program.emit("syscall")
    result = assembler.assemble(program)
    assert result[:4] == b"\x10LEF"
    assert result[HEADER_SIZE:HEADER_SIZE + 8] == bytes.fromhex("2402000a" "0000000c")
    obj = read_object(result)
    assert [(s.type, s.offset, s.size) for s in obj.sections] == [
        (SECTION_TEXT, 15, 8), (SECTION_STRING, 23, 0), (SECTION_DATA, 23, 4),
    ]
    assert obj.section_table_offset == 27
    assert len(result) == 27 + 3 * 11
    assert obj.entry == HEADER_SIZE

def test_entry_point_follows_main(assembler):
    program = Program()
    program.emit("li", "$t0", 0x12345678) # 2 words
    program.code_label("main")
    program.emit("syscall")
    obj = read_object(assembler.assemble(program))
    assert obj.entry == HEADER_SIZE + 8
    assert obj.code_entry == 8

def test_empty_program(assembler):
    obj = read_object(assembler.assemble(Program()))
    assert obj.code == b""
    assert obj.data == b""
    assert obj.entry == HEADER_SIZE

def test_module_level_assemble():
    program = Program(instructions=[Instruction("li", ("$v0", 10)), Instruction("syscall")])
    assert read_object(assemble(program)).code == bytes.fromhex("2402000a0000000c")

def test_program_from_dict():
    program = Program.from_dict({
        "instructions": [
            {"mnemonic": "beq", "operands": ["$t0", "$zero", "end"]},
            {"mnemonic": "nop"},
        ],
        "directives": [{"name": "word", "operands": [5]}],
        "labels": {"end": {"segment": "code", "address": 2}, "five": {"segment": "data", "address": 0}},
    })
    assert program.directives[0].name == ".word"
    assert program.labels["five"].segment.value == "data"
    MipsAssembler().assemble(program)
