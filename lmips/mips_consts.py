# lmips/mips_consts.py
from enum import IntEnum

# MIPS Register Map (Name to Number)
REGISTER_NAMES = [
    "$zero", "$at", "$v0", "$v1", "$a0", "$a1", "$a2", "$a3",
    "$t0", "$t1", "$t2", "$t3", "$t4", "$t5", "$t6", "$t7",
    "$s0", "$s1", "$s2", "$s3", "$s4", "$s5", "$s6", "$s7",
    "$t8", "$t9", "$k0", "$k1", "$gp", "$sp", "$fp", "$ra",
]

REGISTER_MAP = {name: num for num, name in enumerate(REGISTER_NAMES)}
REGISTER_MAP.update({f"${num}": num for num in range(32)}) # Numeric aliases $0..$31

# Reverse map (Number to Preferred Name)
REGISTER_MAP_REV = dict(enumerate(REGISTER_NAMES))

REG_ZERO = 0
REG_AT = 1
REG_V0 = 2
REG_GP = 28
REG_SP = 29
REG_RA = 31

# --- Field widths and masks ---
OPCODE_SHIFT = 26
RS_SHIFT = 21
RT_SHIFT = 16
RD_SHIFT = 11
SHAMT_SHIFT = 6

OPCODE_MASK = 0x3F
REG_MASK = 0x1F
SHAMT_MASK = 0x1F
FUNCT_MASK = 0x3F
IMM_MASK = 0xFFFF
TARGET_MASK = 0x03FFFFFF
WORD_MASK = 0xFFFFFFFF


class Opcode(IntEnum):
    """Primary opcodes (bits 31..26). SPECIAL selects the R-type table."""
    SPECIAL = 0x00
    J = 0x02
    JAL = 0x03
    BEQ = 0x04
    BNE = 0x05
    BLEZ = 0x06
    BGTZ = 0x07
    ADDI = 0x08
    ADDIU = 0x09
    SLTI = 0x0a
    SLTIU = 0x0b
    ANDI = 0x0c
    ORI = 0x0d
    XORI = 0x0e
    LUI = 0x0f
    LB = 0x20
    LH = 0x21
    LW = 0x23
    LBU = 0x24
    LHU = 0x25
    SB = 0x28
    SH = 0x29
    SW = 0x2b


class Funct(IntEnum):
    """Function codes (bits 5..0) of SPECIAL instructions."""
    SLL = 0x00
    SRL = 0x02
    SRA = 0x03
    SLLV = 0x04
    SRLV = 0x06
    SRAV = 0x07
    JR = 0x08
    JALR = 0x09
    SYSCALL = 0x0c
    MFHI = 0x10
    MTHI = 0x11
    MFLO = 0x12
    MTLO = 0x13
    MULT = 0x18
    MULTU = 0x19
    DIV = 0x1a
    DIVU = 0x1b
    ADD = 0x20
    ADDU = 0x21
    SUB = 0x22
    SUBU = 0x23
    AND = 0x24
    OR = 0x25
    XOR = 0x26
    NOR = 0x27
    SLT = 0x2a
    SLTU = 0x2b


# --- Opcode/Funct Maps (mnemonic -> numeric code) ---
R_TYPE_FUNCT = {f.name.lower(): f for f in Funct}

J_TYPE_OPCODE = {"j": Opcode.J, "jal": Opcode.JAL}

I_TYPE_OPCODE = {
    op.name.lower(): op for op in Opcode
    if op is not Opcode.SPECIAL and op.name.lower() not in J_TYPE_OPCODE
}

# --- Define Formats ---
# Operand order as it appears in assembly text, per base instruction.
R_TYPE_FORMATS = {
    # rd, rs, rt
    "add": ["rd", "rs", "rt"], "addu": ["rd", "rs", "rt"], "sub": ["rd", "rs", "rt"],
    "subu": ["rd", "rs", "rt"], "and": ["rd", "rs", "rt"], "or": ["rd", "rs", "rt"],
    "xor": ["rd", "rs", "rt"], "nor": ["rd", "rs", "rt"], "slt": ["rd", "rs", "rt"],
    "sltu": ["rd", "rs", "rt"],
    # rd, rt, rs
    "sllv": ["rd", "rt", "rs"], "srlv": ["rd", "rt", "rs"], "srav": ["rd", "rt", "rs"],
    # rd, rt, shamt
    "sll": ["rd", "rt", "shamt"], "srl": ["rd", "rt", "shamt"], "sra": ["rd", "rt", "shamt"],
    # rs
    "jr": ["rs"], "mthi": ["rs"], "mtlo": ["rs"],
    # rd
    "mfhi": ["rd"], "mflo": ["rd"],
    # rs, rt
    "mult": ["rs", "rt"], "multu": ["rs", "rt"], "div": ["rs", "rt"], "divu": ["rs", "rt"],
    # rd, rs
    "jalr": ["rd", "rs"],
    "syscall": [],
}

I_TYPE_FORMATS = {
    # rt, rs, imm
    "addi": ["rt", "rs", "imm"], "addiu": ["rt", "rs", "imm"], "slti": ["rt", "rs", "imm"],
    "sltiu": ["rt", "rs", "imm"], "andi": ["rt", "rs", "imm"], "ori": ["rt", "rs", "imm"],
    "xori": ["rt", "rs", "imm"],
    # rt, imm
    "lui": ["rt", "imm"],
    # rt, offset, base
    "lw": ["rt", "imm", "rs"], "sw": ["rt", "imm", "rs"], "lb": ["rt", "imm", "rs"],
    "lbu": ["rt", "imm", "rs"], "lh": ["rt", "imm", "rs"], "lhu": ["rt", "imm", "rs"],
    "sb": ["rt", "imm", "rs"], "sh": ["rt", "imm", "rs"],
    # rs, rt, label
    "beq": ["rs", "rt", "label"], "bne": ["rs", "rt", "label"],
    # rs, label (rt field must be 0)
    "blez": ["rs", "label"], "bgtz": ["rs", "label"],
}

J_TYPE_FORMATS = {
    "j": ["target"], "jal": ["target"],
}

# --- Syscalls ---
SYSCALL_EXIT = 10

# --- Directives Set ---
DATA_DIRECTIVE_WIDTHS = {".byte": 1, ".half": 2, ".word": 4}
STRING_DIRECTIVES = {".ascii", ".asciiz"}
