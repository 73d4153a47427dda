# lmips/mips_assembler.py
import logging

from lmips.mips_consts import (
    REGISTER_MAP, R_TYPE_FUNCT, I_TYPE_OPCODE, J_TYPE_OPCODE,
    R_TYPE_FORMATS, I_TYPE_FORMATS, J_TYPE_FORMATS,
    DATA_DIRECTIVE_WIDTHS, STRING_DIRECTIVES, TARGET_MASK,
)
from lmips.mips_container import (
    HEADER_SIZE, ObjectWriter, SECTION_TEXT, SECTION_STRING, SECTION_DATA,
)
from lmips.mips_errors import (
    AssemblerError, OperandError, UndefinedLabelError, UnsupportedInstructionError,
)
from lmips.mips_format import encode_r, encode_i, encode_j
from lmips.mips_lowering import is_literal, is_register, lower
from lmips.mips_program import Segment

logger = logging.getLogger(__name__)
# Basic configuration if running standalone for debugging
# logging.basicConfig(level=logging.DEBUG)

ENTRY_LABEL = "main"


class MipsAssembler:
    """
    Turns a symbolic Program into an object container.

    Pass 1 lowers every instruction to base instructions and records where
    each one starts, so code labels get their final addresses from the
    post-expansion instruction count. Pass 2 encodes the base instructions
    and the data directives into an ObjectWriter and backpatches the header.
    """

    def __init__(self):
        self.symbol_table = {}       # label -> byte address (code: offset into .text, data: offset into .data)
        self.base_instructions = []  # lowered instruction dicts with their addresses
        self.instruction_starts = [] # symbolic index -> first machine index
        self.machine_code = []       # encoded words
        self.data_segment = bytearray()
        self.entry = HEADER_SIZE
        self.sections = []

    def _parse_register(self, reg, instr):
        """Converts register name ($t0, $3, etc.) to its number."""
        if not is_register(reg):
            raise OperandError(instr, f"Expected a register, got '{reg}'")
        reg_lower = reg.lower()
        if reg_lower not in REGISTER_MAP:
            raise OperandError(instr, f"Invalid register name: '{reg}'")
        return REGISTER_MAP[reg_lower]

    def _parse_immediate(self, value, instr, bits=16):
        """Checks a literal fits in 'bits' bits (signed or unsigned) and masks it."""
        if not is_literal(value):
            raise OperandError(instr, f"Invalid immediate value: '{value}'")
        min_val, max_val = -(1 << (bits - 1)), (1 << bits) - 1
        if not (min_val <= value <= max_val):
            raise OperandError(instr, f"Immediate '{value}' out of range for {bits}-bit value ({min_val} to {max_val})")
        return value & ((1 << bits) - 1)

    def _resolve_label(self, label_name, instr):
        """Looks up label address, raising UndefinedLabelError if missing."""
        if label_name not in self.symbol_table:
            raise UndefinedLabelError(label_name, instr)
        return self.symbol_table[label_name]

    def _resolve_target(self, target, instr):
        """A branch/jump target is either a label name or a literal byte address."""
        if is_literal(target):
            return target
        if not isinstance(target, str) or is_register(target):
            raise OperandError(instr, f"Invalid jump target: '{target}'")
        return self._resolve_label(target, instr)

    def first_pass(self, program):
        """ Pass 1: Lower instructions, assign machine addresses, build the symbol table. """
        self.base_instructions = []
        self.instruction_starts = []

        logger.debug("--- Starting First Pass ---")
        for index, instruction in enumerate(program.instructions):
            self.instruction_starts.append(len(self.base_instructions))
            expanded = lower(instruction)
            for base in expanded:
                base["address"] = len(self.base_instructions) * 4
                base["source"] = str(instruction)
                self.base_instructions.append(base)
            logger.debug(f"Pass 1: '{instruction}' (#{index}) -> {len(expanded)} word(s) at 0x{self.instruction_starts[-1] * 4:08x}")
        self.instruction_starts.append(len(self.base_instructions)) # End of code

        self.symbol_table = {}
        for name, label in program.labels.items():
            if label.segment == Segment.CODE:
                if not 0 <= label.address < len(self.instruction_starts):
                    raise OperandError(name, f"Code label address {label.address} is outside the program")
                # Instruction index -> byte offset, counted after expansion
                self.symbol_table[name] = self.instruction_starts[label.address] * 4
            else:
                self.symbol_table[name] = label.address
            logger.debug(f"Pass 1: Label '{name}' ({label.segment.value}) resolved to 0x{self.symbol_table[name]:08x}")

        self.entry = HEADER_SIZE
        entry_label = program.labels.get(ENTRY_LABEL)
        if entry_label is not None and entry_label.segment == Segment.CODE:
            self.entry += self.symbol_table[ENTRY_LABEL]
        logger.debug("--- First Pass Complete ---")

    def second_pass(self, program):
        """ Pass 2: Encode base instructions and data, then write sections and header. """
        writer = ObjectWriter()
        self.machine_code = []

        logger.debug("--- Starting Second Pass ---")
        text = writer.begin_section(SECTION_TEXT)
        for instr_details in self.base_instructions:
            word = self.encode_instruction(instr_details)
            self.machine_code.append(word)
            writer.emit_word(word)
            logger.debug(f"Pass 2: Assembled 0x{word:08x} for '{instr_details['instruction']}' at 0x{instr_details['address']:08x} (from '{instr_details['source']}')")
        writer.end_section(text)

        # Literal pool is reserved but nothing is pooled yet
        strings = writer.begin_section(SECTION_STRING)
        writer.end_section(strings)

        data = writer.begin_section(SECTION_DATA)
        self.emit_data(program.directives, writer)
        writer.end_section(data)
        self.data_segment = bytearray(writer.buffer[data.offset:data.offset + data.size])

        writer.write_section_table()
        writer.write_header(self.entry)
        self.sections = writer.sections
        logger.debug("--- Second Pass Complete ---")
        return writer.getvalue()

    def emit_data(self, directives, writer):
        for directive in directives:
            name = directive.name
            if name in DATA_DIRECTIVE_WIDTHS:
                emit = {1: writer.emit_byte, 2: writer.emit_half, 4: writer.emit_word}[DATA_DIRECTIVE_WIDTHS[name]]
                for value in directive.operands:
                    if isinstance(value, str) and not is_register(value):
                        value = self._resolve_label(value, name)
                    elif not is_literal(value):
                        raise OperandError(name, f"Invalid value for {name}: '{value}'")
                    emit(value) # Truncated to the directive's width
            elif name in STRING_DIRECTIVES:
                for value in directive.operands:
                    if not isinstance(value, (str, bytes)):
                        raise OperandError(name, f"Expected a string for {name}, got '{value}'")
                    if isinstance(value, str):
                        try:
                            value = value.encode("ascii")
                        except UnicodeEncodeError:
                            raise OperandError(name, f"Non-ASCII character in {name} string: {value!r}")
                    writer.emit_bytes(value)
                    if name == ".asciiz":
                        writer.emit_byte(0)
            else:
                raise UnsupportedInstructionError(name)
            logger.debug(f"Data: '{name}' with {len(directive.operands)} operand(s), file offset now {writer.offset}")

    def encode_instruction(self, instr_details):
        instr = instr_details["instruction"]
        if instr in R_TYPE_FUNCT:
            return self._encode_r_type(instr_details)
        if instr in I_TYPE_OPCODE:
            return self._encode_i_type(instr_details)
        if instr in J_TYPE_OPCODE:
            return self._encode_j_type(instr_details)
        raise UnsupportedInstructionError(instr)

    def _check_operand_count(self, instr, operands, expected_ops):
        if len(operands) != len(expected_ops):
            raise OperandError(instr, f"Incorrect operand count for '{instr}'. Expected {len(expected_ops)}, got {len(operands)}.")

    def _encode_r_type(self, instr_details):
        """Encodes R-type instruction, returning integer machine code."""
        instr = instr_details["instruction"]
        operands = instr_details["operands"]
        expected_ops = R_TYPE_FORMATS[instr]
        self._check_operand_count(instr, operands, expected_ops)

        vals = {}
        for op_type, op in zip(expected_ops, operands):
            if op_type == "shamt":
                if not is_literal(op) or not 0 <= op <= 31:
                    raise OperandError(instr, f"Shift amount '{op}' out of range (0 to 31)")
                vals[op_type] = op
            else:
                vals[op_type] = self._parse_register(op, instr)

        return encode_r(vals.get("rs", 0), vals.get("rt", 0), vals.get("rd", 0), vals.get("shamt", 0), R_TYPE_FUNCT[instr])

    def _encode_i_type(self, instr_details):
        """Encodes I-type instruction, returning integer machine code."""
        instr = instr_details["instruction"]
        operands = instr_details["operands"]
        address = instr_details["address"]
        expected_ops = I_TYPE_FORMATS[instr]
        self._check_operand_count(instr, operands, expected_ops)

        vals = {}
        for op_type, op in zip(expected_ops, operands):
            if op_type in ("rt", "rs"):
                vals[op_type] = self._parse_register(op, instr)
            elif op_type == "imm":
                if isinstance(op, str) and not is_register(op):
                    op = self._resolve_label(op, instr) # la: absolute label address
                vals["imm"] = self._parse_immediate(op, instr)
            elif op_type == "label":
                target_addr = self._resolve_target(op, instr)
                pc_plus_4 = address + 4
                byte_offset = target_addr - pc_plus_4
                if byte_offset % 4 != 0:
                    raise OperandError(instr, f"Branch target address 0x{target_addr:08x} for '{op}' is not word-aligned")
                word_offset = byte_offset >> 2
                if not (-(1 << 15) <= word_offset <= (1 << 15) - 1):
                    raise OperandError(instr, f"Branch target '{op}' (offset {word_offset}) too far for 16-bit signed relative offset.")
                vals["imm"] = word_offset & 0xFFFF
                logger.debug(f"Branch '{instr}' to '{op}' (0x{target_addr:08x}) from 0x{address:08x}. Offset = {word_offset}")

        return encode_i(I_TYPE_OPCODE[instr], vals.get("rs", 0), vals.get("rt", 0), vals.get("imm", 0))

    def _encode_j_type(self, instr_details):
        """Encodes J-type instruction, returning integer machine code."""
        instr = instr_details["instruction"]
        operands = instr_details["operands"]
        self._check_operand_count(instr, operands, J_TYPE_FORMATS[instr])

        target_addr = self._resolve_target(operands[0], instr)
        if target_addr % 4 != 0:
            raise OperandError(instr, f"Jump target address 0x{target_addr:08x} is not word-aligned.")
        if target_addr < 0 or (target_addr >> 2) > TARGET_MASK:
            raise OperandError(instr, f"Jump target address 0x{target_addr:x} does not fit in 26 bits.")

        return encode_j(J_TYPE_OPCODE[instr], target_addr >> 2)

    def assemble(self, program):
        """ Main method: returns the object container bytes for 'program'. """
        logger.info("Starting assembly process...")
        self.symbol_table = {}
        self.data_segment = bytearray()
        self.machine_code = []
        self.sections = []

        try:
            self.first_pass(program)
            result = self.second_pass(program)
        except AssemblerError as e:
            logger.warning(f"Assembly failed: {e}")
            raise

        logger.info(f"Assembly successful: {len(self.machine_code)} instructions, {len(self.data_segment)} data bytes, entry {self.entry}.")
        return result


def assemble(program):
    """Assembles 'program' with a fresh MipsAssembler."""
    return MipsAssembler().assemble(program)
