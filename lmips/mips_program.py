# lmips/mips_program.py
"""
Symbolic program model handed to the assembler by a front end.

Instruction operands are positional, in the order they appear in assembly
text: a str starting with '$' is a register, an int is a literal, any other
str is a label name. Code labels carry the index of the instruction they
precede (before pseudo-instruction expansion); data labels carry a byte
offset into the data section.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Tuple, Union

from lmips.mips_consts import DATA_DIRECTIVE_WIDTHS

Operand = Union[str, int]


class Segment(str, Enum):
    CODE = "code"
    DATA = "data"


@dataclass(frozen=True)
class Label:
    name: str
    segment: Segment
    address: int


@dataclass(frozen=True)
class Instruction:
    mnemonic: str
    operands: Tuple[Operand, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "mnemonic", self.mnemonic.lower())
        object.__setattr__(self, "operands", tuple(self.operands))

    def __str__(self):
        return f"{self.mnemonic} {', '.join(str(op) for op in self.operands)}".strip()


@dataclass(frozen=True)
class Directive:
    name: str
    operands: Tuple[Union[int, str, bytes], ...] = ()

    def __post_init__(self):
        name = self.name.lower()
        if not name.startswith("."):
            name = "." + name
        object.__setattr__(self, "name", name)
        object.__setattr__(self, "operands", tuple(self.operands))


@dataclass
class Program:
    instructions: List[Instruction] = field(default_factory=list)
    directives: List[Directive] = field(default_factory=list)
    labels: Dict[str, Label] = field(default_factory=dict)

    def add_label(self, name, segment, address):
        self.labels[name] = Label(name, Segment(segment), address)
        return self.labels[name]

    def code_label(self, name):
        """Binds 'name' to the next instruction to be appended."""
        return self.add_label(name, Segment.CODE, len(self.instructions))

    def data_label(self, name):
        """Binds 'name' to the data offset where the next directive will land."""
        return self.add_label(name, Segment.DATA, self.data_size())

    def emit(self, mnemonic, *operands):
        self.instructions.append(Instruction(mnemonic, operands))
        return self

    def directive(self, name, *operands):
        self.directives.append(Directive(name, operands))
        return self

    def data_size(self):
        """Byte size of the data section the directives describe."""
        size = 0
        for d in self.directives:
            if d.name in DATA_DIRECTIVE_WIDTHS:
                size += DATA_DIRECTIVE_WIDTHS[d.name] * len(d.operands)
            else:
                # Non-string operands are rejected by the assembler
                strings = [op for op in d.operands if isinstance(op, (str, bytes))]
                size += sum(len(op) for op in strings)
                if d.name == ".asciiz":
                    size += len(strings)
        return size

    @classmethod
    def from_dict(cls, data):
        """
        Builds a Program from JSON-shaped data:
            {"instructions": [{"mnemonic": "add", "operands": ["$t0", "$t1", 5]}, ...],
             "directives":   [{"name": ".word", "operands": [1, 2]}, ...],
             "labels":       {"main": {"segment": "code", "address": 0}, ...}}
        """
        program = cls()
        for item in data.get("instructions", []):
            program.instructions.append(Instruction(item["mnemonic"], item.get("operands", [])))
        for item in data.get("directives", []):
            program.directives.append(Directive(item["name"], item.get("operands", [])))
        for name, item in data.get("labels", {}).items():
            program.add_label(name, item["segment"], int(item["address"]))
        return program
