# lmips/mips_format.py
"""
Bit-level packing and unpacking of 32-bit instruction words.

Both the assembler and the simulator go through these helpers so the field
layout is written down exactly once:

    R-type: opcode(6) rs(5) rt(5) rd(5) shamt(5) funct(6)
    I-type: opcode(6) rs(5) rt(5) immediate(16)
    J-type: opcode(6) target(26)
"""
from collections import namedtuple

from lmips.mips_consts import (
    OPCODE_SHIFT, RS_SHIFT, RT_SHIFT, RD_SHIFT, SHAMT_SHIFT,
    OPCODE_MASK, REG_MASK, SHAMT_MASK, FUNCT_MASK, IMM_MASK, TARGET_MASK, WORD_MASK,
    Opcode,
)

# Every field of a word, decoded as if it were each of the three shapes
Fields = namedtuple("Fields", ["opcode", "rs", "rt", "rd", "shamt", "funct", "imm", "target"])


def encode_r(rs, rt, rd, shamt, funct):
    """Packs an R-type word (opcode 0)."""
    return ((Opcode.SPECIAL & OPCODE_MASK) << OPCODE_SHIFT) | \
        ((rs & REG_MASK) << RS_SHIFT) | \
        ((rt & REG_MASK) << RT_SHIFT) | \
        ((rd & REG_MASK) << RD_SHIFT) | \
        ((shamt & SHAMT_MASK) << SHAMT_SHIFT) | \
        (funct & FUNCT_MASK)


def encode_i(opcode, rs, rt, imm):
    """Packs an I-type word. The immediate is truncated to 16 bits (two's complement)."""
    return ((opcode & OPCODE_MASK) << OPCODE_SHIFT) | \
        ((rs & REG_MASK) << RS_SHIFT) | \
        ((rt & REG_MASK) << RT_SHIFT) | \
        (imm & IMM_MASK)


def encode_j(opcode, target):
    """Packs a J-type word. 'target' is a word index, not a byte address."""
    return ((opcode & OPCODE_MASK) << OPCODE_SHIFT) | (target & TARGET_MASK)


def decode(word):
    word &= WORD_MASK
    return Fields(
        opcode=(word >> OPCODE_SHIFT) & OPCODE_MASK,
        rs=(word >> RS_SHIFT) & REG_MASK,
        rt=(word >> RT_SHIFT) & REG_MASK,
        rd=(word >> RD_SHIFT) & REG_MASK,
        shamt=(word >> SHAMT_SHIFT) & SHAMT_MASK,
        funct=word & FUNCT_MASK,
        imm=word & IMM_MASK,
        target=word & TARGET_MASK,
    )


def sign_extend(value, bits=16):
    """Sign extend a 'bits'-bit value represented as an integer."""
    sign_bit = 1 << (bits - 1)
    value &= (1 << bits) - 1
    return (value ^ sign_bit) - sign_bit


def to_signed_32(unsigned_val):
    """Converts a 32-bit unsigned value (0 to 0xFFFFFFFF) to its signed equivalent."""
    unsigned_val &= WORD_MASK
    if unsigned_val >= (1 << 31): # Sign bit set
        return unsigned_val - (1 << 32)
    return unsigned_val


def to_unsigned_32(value):
    return value & WORD_MASK


def fits_signed_32(value):
    return -(1 << 31) <= value <= (1 << 31) - 1
