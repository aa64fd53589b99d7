from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from lexer import (
    DUPLICATE_LABEL,
    INVALID_ADDRESS,
    STATIC_INVALID_SYNTAX,
    UNKNOWN_OPCODE,
    UNRESOLVED_LABEL,
    HRMParseError,
    Lexer,
    Token,
)


OP_INBOX = "INBOX"
OP_OUTBOX = "OUTBOX"
OP_COPYFROM = "COPYFROM"
OP_COPYTO = "COPYTO"
OP_ADD = "ADD"
OP_SUB = "SUB"
OP_BUMPUP = "BUMPUP"
OP_BUMPDN = "BUMPDN"
OP_JUMP = "JUMP"
OP_JUMPZ = "JUMPZ"
OP_JUMPN = "JUMPN"

OPERAND_NONE = "none"
OPERAND_ADDRESS = "address"
OPERAND_LABEL = "label"

OPERANDS: Dict[str, str] = {
    OP_INBOX: OPERAND_NONE,
    OP_OUTBOX: OPERAND_NONE,
    OP_COPYFROM: OPERAND_ADDRESS,
    OP_COPYTO: OPERAND_ADDRESS,
    OP_ADD: OPERAND_ADDRESS,
    OP_SUB: OPERAND_ADDRESS,
    OP_BUMPUP: OPERAND_ADDRESS,
    OP_BUMPDN: OPERAND_ADDRESS,
    OP_JUMP: OPERAND_LABEL,
    OP_JUMPZ: OPERAND_LABEL,
    OP_JUMPN: OPERAND_LABEL,
}

# Save-file spelling -> opcode. Callers with a different save format pass
# their own table to Parser/parse_program/format_program.
MNEMONICS: Dict[str, str] = {name: name for name in OPERANDS}

COMMENT_KEYWORD = "COMMENT"
HEADER = "-- HUMAN RESOURCE MACHINE PROGRAM --"


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: Optional[SourceLocation]


@dataclass
class Address:
    tile: int
    indirect: bool = False

    def __str__(self) -> str:
        return f"[{self.tile}]" if self.indirect else str(self.tile)


@dataclass
class Instruction(Node):
    opcode: str
    address: Optional[Address] = None
    label: Optional[str] = None
    target: Optional[int] = None

    @property
    def is_jump(self) -> bool:
        return OPERANDS[self.opcode] == OPERAND_LABEL

    def describe(self, mnemonics: Optional[Mapping[str, str]] = None, *, width: int = 0) -> str:
        name = self.opcode
        if mnemonics is not None:
            name = _spelling_for(self.opcode, mnemonics)
        operand = self.address if self.address is not None else self.label
        if operand is None:
            return name
        return f"{name.ljust(width)} {operand}"


@dataclass
class Marker:
    """A label declaration or COMMENT marker sitting before instruction ``index``."""

    index: int
    kind: str  # "LABEL" | "COMMENT"
    value: str


@dataclass
class Definition:
    kind: str  # "COMMENT" | "LABEL"
    ident: int
    data: str


@dataclass
class Program(Node):
    instructions: List[Instruction]
    labels: Dict[str, int]
    markers: List[Marker] = field(default_factory=list)
    definitions: List[Definition] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.instructions)


class Parser:
    def __init__(
        self,
        tokens: List[Token],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
        *,
        mnemonics: Optional[Mapping[str, str]] = None,
    ):
        self.tokens = tokens
        self.filename = filename
        self.source_lines = source_lines or []
        self.mnemonics = dict(mnemonics) if mnemonics is not None else dict(MNEMONICS)
        for spelling, opcode in self.mnemonics.items():
            if opcode not in OPERANDS:
                raise ValueError(f"Mnemonic '{spelling}' maps to unknown opcode '{opcode}'")
        self.index = 0

    def parse(self) -> Program:
        instructions: List[Instruction] = []
        labels: Dict[str, int] = {}
        markers: List[Marker] = []
        definitions: List[Definition] = []

        # Pass one: collect instructions and label positions.
        while self._peek().type != "EOF":
            token = self._peek()
            if token.type in ("NEWLINE", "HEADER"):
                self.index += 1
                continue
            if token.type == "DEFINE":
                definitions.append(self._parse_define(self._consume("DEFINE")))
                self._consume_end_of_line()
                continue
            if token.type != "IDENT":
                raise self._error(STATIC_INVALID_SYNTAX, f"Expected instruction or label but found {token.type}", token)
            if self._peek_next().type == "COLON":
                self._consume("IDENT")
                self._consume("COLON")
                if token.value in labels:
                    raise self._error(DUPLICATE_LABEL, f"Label '{token.value}' is declared twice", token)
                labels[token.value] = len(instructions)
                markers.append(Marker(index=len(instructions), kind="LABEL", value=token.value))
                continue
            if token.value == COMMENT_KEYWORD:
                self._consume("IDENT")
                ident = self._consume("NUMBER")
                markers.append(Marker(index=len(instructions), kind="COMMENT", value=ident.value))
                self._consume_end_of_line()
                continue
            instructions.append(self._parse_instruction())
            self._consume_end_of_line()

        # Pass two: rewrite jump labels to instruction indices.
        for instruction in instructions:
            if instruction.label is None:
                continue
            if instruction.label not in labels:
                loc = instruction.location
                raise HRMParseError(
                    UNRESOLVED_LABEL,
                    f"Jump to undeclared label '{instruction.label}'",
                    filename=self.filename,
                    line=loc.line if loc else None,
                    column=loc.column if loc else None,
                )
            instruction.target = labels[instruction.label]

        eof_token: Token = self._peek()
        return Program(
            location=self._location_from_token(eof_token),
            instructions=instructions,
            labels=labels,
            markers=markers,
            definitions=definitions,
        )

    def _parse_instruction(self) -> Instruction:
        token = self._consume("IDENT")
        opcode = self.mnemonics.get(token.value)
        if opcode is None:
            raise self._error(UNKNOWN_OPCODE, f"Unknown instruction '{token.value}'", token)
        location = self._location_from_token(token)
        operand = OPERANDS[opcode]
        if operand == OPERAND_ADDRESS:
            return Instruction(location=location, opcode=opcode, address=self._parse_address(token))
        if operand == OPERAND_LABEL:
            return Instruction(location=location, opcode=opcode, label=self._parse_label_operand(token))
        return Instruction(location=location, opcode=opcode)

    def _parse_address(self, opcode_token: Token) -> Address:
        token = self._peek()
        if token.type == "LBRACKET":
            self._consume("LBRACKET")
            tile = self._parse_tile_index(opcode_token)
            if self._peek().type != "RBRACKET":
                raise self._error(STATIC_INVALID_SYNTAX, "Expected ']' to close indirect address", self._peek())
            self._consume("RBRACKET")
            return Address(tile=tile, indirect=True)
        return Address(tile=self._parse_tile_index(opcode_token))

    def _parse_tile_index(self, opcode_token: Token) -> int:
        token = self._peek()
        if token.type in ("NEWLINE", "EOF"):
            raise self._error(STATIC_INVALID_SYNTAX, f"{opcode_token.value} expects a tile address", opcode_token)
        if token.type == "NUMBER":
            self._consume("NUMBER")
            value = int(token.value)
            if value < 0:
                raise self._error(INVALID_ADDRESS, f"Tile address must be non-negative, got {value}", token)
            return value
        if token.type == "IDENT":
            raise self._error(INVALID_ADDRESS, f"'{token.value}' is not a tile address", token)
        raise self._error(STATIC_INVALID_SYNTAX, f"Unexpected {token.type} in address", token)

    def _parse_label_operand(self, opcode_token: Token) -> str:
        token = self._peek()
        if token.type in ("NEWLINE", "EOF"):
            raise self._error(STATIC_INVALID_SYNTAX, f"{opcode_token.value} expects a label", opcode_token)
        if token.type != "IDENT":
            raise self._error(STATIC_INVALID_SYNTAX, f"Expected label name but found {token.type}", token)
        self._consume("IDENT")
        return token.value

    def _parse_define(self, token: Token) -> Definition:
        header, _, data = token.value.partition("\n")
        kind, ident = header.split(" ", 1)
        return Definition(kind=kind, ident=int(ident), data=data)

    def _consume_end_of_line(self) -> None:
        token = self._peek()
        if token.type == "NEWLINE":
            self.index += 1
            return
        if token.type == "EOF":
            return
        raise self._error(STATIC_INVALID_SYNTAX, f"Unexpected {token.type} '{token.value}' at end of line", token)

    def _consume(self, token_type: str) -> Token:
        token = self._peek()
        if token.type != token_type:
            raise self._error(STATIC_INVALID_SYNTAX, f"Expected token {token_type} but found {token.type}", token)
        self.index += 1
        return token

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _peek_next(self) -> Token:
        if self.index + 1 >= len(self.tokens):
            return self.tokens[-1]
        return self.tokens[self.index + 1]

    def _error(self, kind: str, message: str, token: Token) -> HRMParseError:
        return HRMParseError(kind, message, filename=self.filename, line=token.line, column=token.column)

    def _location_from_token(self, token: Token) -> SourceLocation:
        line_index = token.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=token.line, column=token.column, statement=statement)


def parse_program(
    text: str,
    filename: str = "<string>",
    *,
    mnemonics: Optional[Mapping[str, str]] = None,
) -> Program:
    tokens = Lexer(text, filename).tokenize()
    return Parser(tokens, filename, text.splitlines(), mnemonics=mnemonics).parse()


def _spelling_for(opcode: str, mnemonics: Mapping[str, str]) -> str:
    for spelling, mapped in mnemonics.items():
        if mapped == opcode:
            return spelling
    raise ValueError(f"No spelling for opcode '{opcode}'")


def format_program(program: Program, *, mnemonics: Optional[Mapping[str, str]] = None) -> str:
    """Write ``program`` back out in save-file form."""
    table = mnemonics if mnemonics is not None else MNEMONICS
    lines: List[str] = [HEADER, ""]
    by_index: Dict[int, List[Marker]] = {}
    for marker in program.markers:
        by_index.setdefault(marker.index, []).append(marker)
    # Labels set on a Program built in code have no marker yet.
    written = {m.value for m in program.markers if m.kind == "LABEL"}
    for name, index in program.labels.items():
        if name not in written:
            by_index.setdefault(index, []).append(Marker(index=index, kind="LABEL", value=name))
    for index in range(len(program.instructions) + 1):
        for marker in by_index.get(index, []):
            if marker.kind == "LABEL":
                lines.append(f"{marker.value}:")
            else:
                lines.append(f"    {COMMENT_KEYWORD}  {marker.value}")
        if index < len(program.instructions):
            lines.append("    " + program.instructions[index].describe(table, width=8))
    if program.definitions:
        lines.append("")
        lines.append("")
    for definition in program.definitions:
        lines.append(f"DEFINE {definition.kind} {definition.ident}")
        lines.append(f"{definition.data};")
    return "\n".join(lines) + "\n"
