# lmips/mips_lowering.py
"""
Lowering of symbolic instructions into base machine instructions.

Each handler takes (mnemonic, operands) and returns a list of base
instruction dicts {"instruction": name, "operands": [...]} whose operands
follow R_TYPE_FORMATS / I_TYPE_FORMATS / J_TYPE_FORMATS. Lowering never looks
at label addresses, so the number of words an instruction expands to is known
before any label is resolved.
"""
from lmips.mips_consts import REGISTER_MAP_REV, REG_ZERO, REG_AT, REG_GP, REG_RA, WORD_MASK
from lmips.mips_errors import OperandError, UnsupportedInstructionError

AT = REGISTER_MAP_REV[REG_AT]
ZERO = REGISTER_MAP_REV[REG_ZERO]
GP = REGISTER_MAP_REV[REG_GP]
RA = REGISTER_MAP_REV[REG_RA]


def is_literal(operand):
    return isinstance(operand, int) and not isinstance(operand, bool)


def is_register(operand):
    return isinstance(operand, str) and operand.startswith("$")


def _base(name, *operands):
    return {"instruction": name, "operands": list(operands)}


def _expect(name, operands, *counts):
    if len(operands) not in counts:
        expected = " or ".join(str(c) for c in counts)
        raise OperandError(name, f"Incorrect operand count for '{name}'. Expected {expected}, got {len(operands)}.")


def _load_immediate(name, dst, value):
    """Base instructions that leave the 32-bit literal 'value' in register 'dst'."""
    if not is_literal(value):
        raise OperandError(name, f"Expected a literal value, got '{value}'")
    if not -(1 << 31) <= value <= WORD_MASK:
        raise OperandError(name, f"Literal {value} does not fit in 32 bits")
    value &= WORD_MASK
    if value <= 0xFFFF:
        # addiu zero-extends, so this covers 0..0xFFFF in one word
        return [_base("addiu", dst, ZERO, value)]
    upper, lower = value >> 16, value & 0xFFFF
    if lower == 0:
        return [_base("lui", dst, upper)]
    return [_base("lui", AT, upper), _base("ori", dst, AT, lower)]


def _materialize(name, operand):
    """Returns (prefix, register): a literal operand is loaded into $at first."""
    if is_literal(operand):
        return _load_immediate(name, AT, operand), AT
    return [], operand


# --- Handlers ---

def _expand_register_op(name, ops):
    # add rd, rs, rt (rt may be a literal)
    _expect(name, ops, 3)
    rd, rs, rt = ops
    prefix, rt = _materialize(name, rt)
    return prefix + [_base(name, rd, rs, rt)]


def _expand_direct(name, ops):
    # Base instruction whose operands already match its format
    return [_base(name, *ops)]


def _expand_mult_div(name, ops):
    # mult rs, rt (rt may be a literal)
    _expect(name, ops, 2)
    rs, rt = ops
    prefix, rt = _materialize(name, rt)
    return prefix + [_base(name, rs, rt)]


def _expand_rem(name, ops):
    # rem rd, rs, rt -> div rs, rt ; mfhi rd
    _expect(name, ops, 3)
    rd, rs, rt = ops
    prefix, rt = _materialize(name, rt)
    div = "divu" if name.endswith("u") else "div"
    return prefix + [_base(div, rs, rt), _base("mfhi", rd)]


def _expand_neg(name, ops):
    # neg rd, rs -> sub rd, $zero, rs
    _expect(name, ops, 2)
    rd, rs = ops
    sub = "subu" if name.endswith("u") else "sub"
    return [_base(sub, rd, ZERO, rs)]


def _expand_li(name, ops):
    # li rt, imm
    _expect(name, ops, 2)
    dst, value = ops
    return _load_immediate(name, dst, value)


def _expand_la(name, ops):
    # la rt, label -> addiu rt, $gp, address(label); resolved at encode time
    _expect(name, ops, 2)
    dst, label = ops
    if not isinstance(label, str) or is_register(label):
        raise OperandError(name, f"Expected a label, got '{label}'")
    return [_base("addiu", dst, GP, label)]


def _expand_move(name, ops):
    # move rd, rs -> add rd, $zero, rs
    _expect(name, ops, 2)
    dst, src = ops
    return [_base("add", dst, ZERO, src)]


def _expand_clear(name, ops):
    # clear rd -> add rd, $zero, $zero
    _expect(name, ops, 1)
    return [_base("add", ops[0], ZERO, ZERO)]


def _expand_nop(name, ops):
    # nop -> sll $zero, $zero, 0
    _expect(name, ops, 0)
    return [_base("sll", ZERO, ZERO, 0)]


def _expand_branch(name, ops):
    # beq rs, rt, label (rt may be a literal)
    _expect(name, ops, 3)
    rs, rt, label = ops
    prefix, rt = _materialize(name, rt)
    return prefix + [_base(name, rs, rt, label)]


def _expand_branch_pseudo(name, ops):
    # blt rs, rt, label -> slt $at, rs, rt ; bne $at, $zero, label
    # bgt rs, rt, label -> slt $at, rt, rs ; bne $at, $zero, label
    # ble rs, rt, label -> slt $at, rt, rs ; beq $at, $zero, label
    # bge rs, rt, label -> slt $at, rs, rt ; beq $at, $zero, label
    _expect(name, ops, 3)
    rs, rt, label = ops
    if name in ("bgt", "ble"):
        rs, rt = rt, rs
    if is_literal(rs) and is_literal(rt):
        raise OperandError(name, "At most one literal operand is allowed")
    if is_literal(rs):
        prefix, rs = _materialize(name, rs)
    else:
        prefix, rt = _materialize(name, rt)
    branch = "beq" if name in ("ble", "bge") else "bne"
    return prefix + [_base("slt", AT, rs, rt), _base(branch, AT, ZERO, label)]


def _expand_jump(name, ops):
    # b label -> j label
    _expect(name, ops, 1)
    return [_base("j" if name == "b" else name, ops[0])]


def _expand_jalr(name, ops):
    # jalr rs -> jalr $ra, rs
    _expect(name, ops, 1, 2)
    if len(ops) == 1:
        return [_base("jalr", RA, ops[0])]
    return [_base("jalr", *ops)]


LOWERING_HANDLERS = {
    **{op: _expand_register_op for op in (
        "add", "addu", "sub", "subu", "and", "or", "xor", "nor", "slt", "sltu")},
    **{op: _expand_direct for op in (
        "addi", "addiu", "andi", "ori", "xori", "slti", "sltiu", "lui",
        "sll", "srl", "sra", "sllv", "srlv", "srav",
        "lb", "lbu", "lh", "lhu", "lw", "sb", "sh", "sw",
        "mfhi", "mflo", "mthi", "mtlo", "jr", "syscall", "blez", "bgtz")},
    **{op: _expand_mult_div for op in ("mult", "multu", "div", "divu")},
    "rem": _expand_rem, "remu": _expand_rem,
    "neg": _expand_neg, "negu": _expand_neg,
    "li": _expand_li, "la": _expand_la,
    "move": _expand_move, "clear": _expand_clear, "nop": _expand_nop,
    "beq": _expand_branch, "bne": _expand_branch,
    "blt": _expand_branch_pseudo, "bgt": _expand_branch_pseudo,
    "ble": _expand_branch_pseudo, "bge": _expand_branch_pseudo,
    "b": _expand_jump, "j": _expand_jump, "jal": _expand_jump,
    "jalr": _expand_jalr,
}


def lower(instruction):
    """Expands one symbolic Instruction into its list of base instructions."""
    handler = LOWERING_HANDLERS.get(instruction.mnemonic)
    if handler is None:
        raise UnsupportedInstructionError(instruction.mnemonic)
    return handler(instruction.mnemonic, list(instruction.operands))
