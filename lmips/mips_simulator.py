# lmips/mips_simulator.py
import logging
import struct # For packing/unpacking bytes to/from byte representations
from collections import defaultdict # For efficient sparse memory representation

from lmips.mips_consts import (
    Opcode, Funct, REG_V0, REG_SP, REG_RA, WORD_MASK, SYSCALL_EXIT,
)
from lmips.mips_errors import (
    ExecutionFault, IntegerOverflowFault, UnsupportedInstructionFault,
    UnsupportedSyscallFault, AddressErrorFault,
)
from lmips.mips_format import decode, sign_extend, to_signed_32, fits_signed_32

# Set up logger for this module
logger = logging.getLogger(__name__)

STACK_SIZE = 0x00100000 # Initial $sp; the stack grows down from here in data memory
DATA_BASE = 0x00000000  # Where the initialized data image is placed in data memory

# struct codes per access width: (signed, unsigned), big-endian
_MEMORY_FORMATS = {1: (">b", ">B"), 2: (">h", ">H"), 4: (">i", ">I")}


class MipsSimulator:
    """
    Executes a flat buffer of big-endian MIPS words.

    Code lives in its own immutable buffer addressed from 0; loads and stores
    go to a separate sparse data memory. Each instance owns its registers,
    hi/lo, PC and memory, so independent runs need independent instances.
    """
    def __init__(self, stack_size=STACK_SIZE, exit_syscall=SYSCALL_EXIT):
        self.stack_size = stack_size
        self.exit_syscall = exit_syscall

        self._special_handlers = {
            Funct.SLL: self._op_sll, Funct.SRL: self._op_srl, Funct.SRA: self._op_sra,
            Funct.SLLV: self._op_sllv, Funct.SRLV: self._op_srlv, Funct.SRAV: self._op_srav,
            Funct.JR: self._op_jr, Funct.JALR: self._op_jalr,
            Funct.SYSCALL: self._op_syscall,
            Funct.MFHI: self._op_mfhi, Funct.MTHI: self._op_mthi,
            Funct.MFLO: self._op_mflo, Funct.MTLO: self._op_mtlo,
            Funct.MULT: self._op_mult, Funct.MULTU: self._op_multu,
            Funct.DIV: self._op_div, Funct.DIVU: self._op_divu,
            Funct.ADD: self._op_add, Funct.ADDU: self._op_addu,
            Funct.SUB: self._op_sub, Funct.SUBU: self._op_subu,
            Funct.AND: self._op_and, Funct.OR: self._op_or,
            Funct.XOR: self._op_xor, Funct.NOR: self._op_nor,
            Funct.SLT: self._op_slt, Funct.SLTU: self._op_sltu,
        }
        self._opcode_handlers = {
            Opcode.SPECIAL: self._op_special,
            Opcode.J: self._op_j, Opcode.JAL: self._op_jal,
            Opcode.BEQ: self._op_beq, Opcode.BNE: self._op_bne,
            Opcode.BLEZ: self._op_blez, Opcode.BGTZ: self._op_bgtz,
            Opcode.ADDI: self._op_addi, Opcode.ADDIU: self._op_addiu,
            Opcode.SLTI: self._op_slti, Opcode.SLTIU: self._op_sltiu,
            Opcode.ANDI: self._op_andi, Opcode.ORI: self._op_ori,
            Opcode.XORI: self._op_xori, Opcode.LUI: self._op_lui,
            Opcode.LB: self._op_lb, Opcode.LH: self._op_lh, Opcode.LW: self._op_lw,
            Opcode.LBU: self._op_lbu, Opcode.LHU: self._op_lhu,
            Opcode.SB: self._op_sb, Opcode.SH: self._op_sh, Opcode.SW: self._op_sw,
        }
        self.reset()

    def reset(self):
        """Resets the simulator to its initial state before loading a program."""
        # General Purpose Registers hold unsigned 32-bit patterns
        self.registers = [0] * 32
        self.pc = 0
        self.hi = 0
        self.lo = 0
        # Sparse data memory: byte address -> byte value (0-255), unwritten bytes read as 0
        self.memory = defaultdict(lambda: 0)
        self.program = b""

        # Simulation state: idle, running, halted, faulted
        self.state = "idle"
        self.error_message = None
        self.fault = None
        self.steps = 0
        self.current_address = 0 # Address of the instruction being executed

        logger.info("Simulator reset complete.")

    # --- Memory Access Methods ---

    def _check_alignment(self, address, num_bytes, access):
        if address % num_bytes != 0:
            raise AddressErrorFault(address, f"unaligned {num_bytes}-byte {access}", self.current_address)

    def read_memory(self, address, num_bytes, signed=True):
        """Reads 1, 2, or 4 bytes from data memory (big-endian)."""
        address &= WORD_MASK
        self._check_alignment(address, num_bytes, "read")
        value_bytes = bytes(self.memory[address + i] for i in range(num_bytes))
        fmt = _MEMORY_FORMATS[num_bytes][0 if signed else 1]
        return struct.unpack(fmt, value_bytes)[0]

    def write_memory(self, address, value, num_bytes):
        """Writes the low 1, 2, or 4 bytes of 'value' to data memory (big-endian)."""
        address &= WORD_MASK
        self._check_alignment(address, num_bytes, "write")
        value_bytes = struct.pack(_MEMORY_FORMATS[num_bytes][1], value & ((1 << (8 * num_bytes)) - 1))
        for i in range(num_bytes):
            self.memory[address + i] = value_bytes[i]

    # --- Program Loading ---

    def load_program(self, code, data=b"", entry=0):
        """Loads a code buffer (and optional data image) and readies the machine to run."""
        self.reset()
        if not code:
            self.state = "faulted"
            self.error_message = "Invalid program provided: empty code buffer."
            logger.error(self.error_message)
            return False

        self.program = bytes(code)
        for i, byte in enumerate(bytes(data or b"")):
            self.memory[DATA_BASE + i] = byte

        self.pc = entry
        self.registers[REG_SP] = self.stack_size & WORD_MASK
        self.state = "running"
        logger.info(f"Loaded {len(self.program) // 4} instructions and {len(data or b'')} data bytes, entry 0x{entry:08x}.")
        return True

    # --- Simulation Control ---

    def _fetch(self):
        """Reads the big-endian word at PC and advances PC past it."""
        if self.pc % 4 != 0:
            raise AddressErrorFault(self.pc, "unaligned fetch", self.pc)
        if self.pc < 0 or self.pc + 4 > len(self.program):
            raise AddressErrorFault(self.pc, "fetch outside code", self.pc)
        word = struct.unpack_from(">I", self.program, self.pc)[0]
        self.current_address = self.pc
        self.pc += 4
        return word

    def step(self):
        """
        Executes a single instruction at the current PC.
        Returns the updated state dictionary.
        """
        if self.state != "running":
            logger.warning(f"Cannot step, simulator state is '{self.state}'")
            return self.get_state()

        try:
            word = self._fetch()
            fields = decode(word)
            logger.debug(f"Step: PC=0x{self.current_address:08x}, Instr=0x{word:08x}, Opcode=0x{fields.opcode:02x}")
            handler = self._opcode_handlers.get(fields.opcode)
            if handler is None:
                raise UnsupportedInstructionFault(word, fields.opcode, fields.funct, self.current_address)
            handler(word, fields)
            self.steps += 1
        except ExecutionFault as fault:
            self.state = "faulted"
            self.fault = fault
            self.error_message = str(fault)
            logger.error(self.error_message)

        return self.get_state()

    def run(self, code=None, data=b"", entry=0, max_steps=None):
        """
        Runs until the program halts or faults. With 'code', loads it first.
        'max_steps' bounds the number of instructions executed by this call;
        the state stays 'running' if the bound is reached.
        """
        if code is not None or self.state == "idle":
            if not self.load_program(code, data, entry):
                return self.get_state()

        executed = 0
        while self.state == "running":
            if max_steps is not None and executed >= max_steps:
                logger.info(f"Step limit {max_steps} reached at PC 0x{self.pc:08x}")
                break
            self.step()
            executed += 1

        return self.get_state()

    def _set_register(self, reg_index, value):
        """Internal helper to set a register value, ensuring $zero ($0) is ignored."""
        if reg_index == 0:
            return # Writes to the zero register are discarded
        self.registers[reg_index] = value & WORD_MASK
        logger.debug(f"Set Register ${reg_index} = 0x{self.registers[reg_index]:08x} ({to_signed_32(self.registers[reg_index])})")

    def _signed(self, reg_index):
        return to_signed_32(self.registers[reg_index])

    def _branch(self, f, taken):
        if taken:
            self.pc += sign_extend(f.imm, 16) << 2
            logger.debug(f"Branch taken. New PC=0x{self.pc:08x}")

    def _checked(self, operation, lhs, rhs, result):
        if not fits_signed_32(result):
            raise IntegerOverflowFault(operation, lhs, rhs, self.current_address)
        return result

    # --- R-Type (opcode 0) ---

    def _op_special(self, word, f):
        handler = self._special_handlers.get(f.funct)
        if handler is None:
            raise UnsupportedInstructionFault(word, f.opcode, f.funct, self.current_address)
        handler(f)

    def _op_sll(self, f):
        self._set_register(f.rd, self.registers[f.rt] << f.shamt)

    def _op_srl(self, f):
        self._set_register(f.rd, self.registers[f.rt] >> f.shamt)

    def _op_sra(self, f):
        self._set_register(f.rd, self._signed(f.rt) >> f.shamt)

    def _op_sllv(self, f):
        self._set_register(f.rd, self.registers[f.rt] << (self.registers[f.rs] & 0x1F))

    def _op_srlv(self, f):
        self._set_register(f.rd, self.registers[f.rt] >> (self.registers[f.rs] & 0x1F))

    def _op_srav(self, f):
        self._set_register(f.rd, self._signed(f.rt) >> (self.registers[f.rs] & 0x1F))

    def _op_jr(self, f):
        self.pc = self.registers[f.rs]

    def _op_jalr(self, f):
        target = self.registers[f.rs]
        self._set_register(f.rd if f.rd != 0 else REG_RA, self.pc) # PC already points past jalr
        self.pc = target

    def _op_syscall(self, f):
        number = self.registers[REG_V0]
        if number != self.exit_syscall:
            raise UnsupportedSyscallFault(to_signed_32(number), self.current_address)
        self.state = "halted"
        logger.info(f"Program exited via syscall {number} at PC 0x{self.current_address:08x}.")

    def _op_mfhi(self, f):
        self._set_register(f.rd, self.hi)

    def _op_mthi(self, f):
        self.hi = self.registers[f.rs]

    def _op_mflo(self, f):
        self._set_register(f.rd, self.lo)

    def _op_mtlo(self, f):
        self.lo = self.registers[f.rs]

    def _store_product(self, product):
        self.hi = (product >> 32) & WORD_MASK
        self.lo = product & WORD_MASK

    def _op_mult(self, f):
        self._store_product(self._signed(f.rs) * self._signed(f.rt))

    def _op_multu(self, f):
        self._store_product(self.registers[f.rs] * self.registers[f.rt])

    def _store_division(self, dividend, divisor):
        if divisor == 0:
            logger.debug("Division by zero ignored; hi/lo unchanged")
            return
        quotient = abs(dividend) // abs(divisor)
        if (dividend < 0) != (divisor < 0):
            quotient = -quotient # Truncate toward zero
        self.lo = quotient & WORD_MASK
        self.hi = (dividend - quotient * divisor) & WORD_MASK

    def _op_div(self, f):
        self._store_division(self._signed(f.rs), self._signed(f.rt))

    def _op_divu(self, f):
        self._store_division(self.registers[f.rs], self.registers[f.rt])

    def _op_add(self, f):
        lhs, rhs = self._signed(f.rs), self._signed(f.rt)
        self._set_register(f.rd, self._checked("add", lhs, rhs, lhs + rhs))

    def _op_addu(self, f):
        self._set_register(f.rd, self.registers[f.rs] + self.registers[f.rt])

    def _op_sub(self, f):
        lhs, rhs = self._signed(f.rs), self._signed(f.rt)
        self._set_register(f.rd, self._checked("sub", lhs, rhs, lhs - rhs))

    def _op_subu(self, f):
        self._set_register(f.rd, self.registers[f.rs] - self.registers[f.rt])

    def _op_and(self, f):
        self._set_register(f.rd, self.registers[f.rs] & self.registers[f.rt])

    def _op_or(self, f):
        self._set_register(f.rd, self.registers[f.rs] | self.registers[f.rt])

    def _op_xor(self, f):
        self._set_register(f.rd, self.registers[f.rs] ^ self.registers[f.rt])

    def _op_nor(self, f):
        self._set_register(f.rd, ~(self.registers[f.rs] | self.registers[f.rt]))

    def _op_slt(self, f):
        self._set_register(f.rd, int(self._signed(f.rs) < self._signed(f.rt)))

    def _op_sltu(self, f):
        self._set_register(f.rd, int(self.registers[f.rs] < self.registers[f.rt]))

    # --- J-Type ---

    def _op_j(self, word, f):
        self.pc = f.target << 2

    def _op_jal(self, word, f):
        self._set_register(REG_RA, self.pc)
        self.pc = f.target << 2

    # --- Branches ---

    def _op_beq(self, word, f):
        self._branch(f, self.registers[f.rs] == self.registers[f.rt])

    def _op_bne(self, word, f):
        self._branch(f, self.registers[f.rs] != self.registers[f.rt])

    def _op_blez(self, word, f):
        self._branch(f, self._signed(f.rs) <= 0)

    def _op_bgtz(self, word, f):
        self._branch(f, self._signed(f.rs) > 0)

    # --- I-Type ALU ---

    def _op_addi(self, word, f):
        lhs, rhs = self._signed(f.rs), sign_extend(f.imm, 16)
        self._set_register(f.rt, self._checked("addi", lhs, rhs, lhs + rhs))

    def _op_addiu(self, word, f):
        self._set_register(f.rt, self.registers[f.rs] + f.imm) # Zero-extended, unchecked

    def _op_slti(self, word, f):
        self._set_register(f.rt, int(self._signed(f.rs) < sign_extend(f.imm, 16)))

    def _op_sltiu(self, word, f):
        self._set_register(f.rt, int(self.registers[f.rs] < f.imm))

    def _op_andi(self, word, f):
        self._set_register(f.rt, self.registers[f.rs] & f.imm)

    def _op_ori(self, word, f):
        self._set_register(f.rt, self.registers[f.rs] | f.imm)

    def _op_xori(self, word, f):
        self._set_register(f.rt, self.registers[f.rs] ^ f.imm)

    def _op_lui(self, word, f):
        self._set_register(f.rt, f.imm << 16)

    # --- Loads and stores ---

    def _effective_address(self, f):
        return (self.registers[f.rs] + sign_extend(f.imm, 16)) & WORD_MASK

    def _load(self, f, num_bytes, signed):
        value = self.read_memory(self._effective_address(f), num_bytes, signed)
        self._set_register(f.rt, value)

    def _op_lb(self, word, f):
        self._load(f, 1, True)

    def _op_lbu(self, word, f):
        self._load(f, 1, False)

    def _op_lh(self, word, f):
        self._load(f, 2, True)

    def _op_lhu(self, word, f):
        self._load(f, 2, False)

    def _op_lw(self, word, f):
        self._load(f, 4, True)

    def _op_sb(self, word, f):
        self.write_memory(self._effective_address(f), self.registers[f.rt], 1)

    def _op_sh(self, word, f):
        self.write_memory(self._effective_address(f), self.registers[f.rt], 2)

    def _op_sw(self, word, f):
        self.write_memory(self._effective_address(f), self.registers[f.rt], 4)

    def get_state(self):
        """Returns a dictionary representing the current state of the simulator."""
        return {
            "pc": self.pc,
            "registers": self.registers[:], # Return a copy
            "hi": self.hi,
            "lo": self.lo,
            "state": self.state,
            "error": self.error_message,
            "fault": self.fault.to_dict() if self.fault else None,
            "steps": self.steps,
        }


def run(code, data=b"", entry=0, max_steps=None, **kwargs):
    """Runs 'code' on a fresh MipsSimulator and returns its final state."""
    return MipsSimulator(**kwargs).run(code, data, entry, max_steps)
