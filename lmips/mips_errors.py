# lmips/mips_errors.py
"""
Errors raised while assembling and faults raised while executing.

Assembly errors abort assemble() with no output. Execution faults stop the
simulator; MipsSimulator.step() records them in its 'faulted' state.
"""


class AssemblerError(Exception):
    """Base class for every error that aborts assembly."""

    def to_dict(self):
        return {"type": type(self).__name__, "message": str(self)}


class UndefinedLabelError(AssemblerError):
    def __init__(self, label, mnemonic=None):
        self.label = label
        self.mnemonic = mnemonic
        where = f" (referenced by '{mnemonic}')" if mnemonic else ""
        super().__init__(f"Undefined label: '{label}'{where}")


class UnsupportedInstructionError(AssemblerError):
    def __init__(self, mnemonic):
        self.mnemonic = mnemonic
        super().__init__(f"Instruction '{mnemonic}' is not supported.")


class OperandError(AssemblerError):
    """Bad operand: wrong count, unknown register, value out of range, unaligned target."""

    def __init__(self, mnemonic, message):
        self.mnemonic = mnemonic
        super().__init__(f"{mnemonic}: {message}")


class ExecutionFault(Exception):
    """
    Base class for conditions that stop a simulation run.
    'address' is the byte address of the instruction that raised it.
    """

    def __init__(self, message, address):
        self.address = address
        super().__init__(f"{message} at PC 0x{address:08x}")

    def details(self):
        return {}

    def to_dict(self):
        return {"type": type(self).__name__, "message": str(self), "address": self.address, **self.details()}


class IntegerOverflowFault(ExecutionFault):
    def __init__(self, operation, lhs, rhs, address):
        self.operation = operation
        self.lhs = lhs
        self.rhs = rhs
        super().__init__(f"Integer overflow in {operation} ({lhs}, {rhs})", address)

    def details(self):
        return {"operation": self.operation, "operands": [self.lhs, self.rhs]}


class UnsupportedInstructionFault(ExecutionFault):
    def __init__(self, word, opcode, funct, address):
        self.word = word
        self.opcode = opcode
        self.funct = funct # Only meaningful when opcode is 0
        if opcode == 0:
            what = f"funct=0x{funct:02x}"
        else:
            what = f"opcode=0x{opcode:02x}"
        super().__init__(f"Unsupported instruction 0x{word:08x} ({what})", address)

    def details(self):
        return {"word": self.word, "opcode": self.opcode, "funct": self.funct}


class UnsupportedSyscallFault(ExecutionFault):
    def __init__(self, number, address):
        self.number = number
        super().__init__(f"Unsupported syscall {number}", address)

    def details(self):
        return {"syscall": self.number}


class AddressErrorFault(ExecutionFault):
    """Fetch outside the code buffer, unaligned PC, or unaligned data access."""

    def __init__(self, target, reason, address):
        self.target = target
        self.reason = reason
        super().__init__(f"Address error ({reason}) for 0x{target:08x}", address)

    def details(self):
        return {"target": self.target, "reason": self.reason}
