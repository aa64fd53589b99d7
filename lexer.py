from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class HRMError(Exception):
    """Base class for replay errors."""


# Parse error kinds
STATIC_INVALID_SYNTAX = "StaticInvalidSyntax"
UNKNOWN_OPCODE = "UnknownOpcode"
UNRESOLVED_LABEL = "UnresolvedLabel"
DUPLICATE_LABEL = "DuplicateLabel"
INVALID_ADDRESS = "InvalidAddress"


class HRMParseError(HRMError):
    """Raised when parsing fails."""

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        filename: str = "<string>",
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> None:
        where = ""
        if line is not None:
            where = f" at {filename}:{line}:{column}"
        super().__init__(f"{kind}: {message}{where}")
        self.kind = kind
        self.message = message
        self.filename = filename
        self.line = line
        self.column = column


@dataclass
class Token:
    type: str
    value: str
    line: int
    column: int


DIGITS = "0123456789"

SYMBOLS = {
    "[": "LBRACKET",
    "]": "RBRACKET",
    ":": "COLON",
}


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Token]:
        tokens: List[Token] = []
        tokens_append = tokens.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch == " " or ch == "\t" or ch == "\r":
                _advance()
                continue
            if ch == "\n":
                tokens_append(Token("NEWLINE", "\n", self.line, self.column))
                _advance()
                continue
            if ch == "-" and text.startswith("--", self.index):
                tokens_append(self._consume_header())
                continue
            if ch in symbols:
                tokens_append(Token(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch == "-" or ch in DIGITS:
                tokens_append(self._consume_number())
                continue
            if self._is_identifier_start(ch):
                token = self._consume_identifier()
                if token.value == "DEFINE":
                    token = self._consume_define(token)
                tokens_append(token)
                continue
            raise HRMParseError(
                STATIC_INVALID_SYNTAX,
                f"Unexpected character '{ch}'",
                filename=self.filename,
                line=self.line,
                column=self.column,
            )
        tokens_append(Token("EOF", "", self.line, self.column))
        return tokens

    def _consume_header(self) -> Token:
        # "-- HUMAN RESOURCE MACHINE PROGRAM --" and any other "--" line
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] != "\n":
            chars.append(text[self.index])
            self._advance()
        return Token("HEADER", "".join(chars).rstrip("\r"), line, col)

    def _consume_number(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        if self._peek() == "-":
            chars.append("-")
            self._advance()
            if self._eof or self._peek() not in DIGITS:
                raise HRMParseError(
                    STATIC_INVALID_SYNTAX,
                    "Expected digits after '-'",
                    filename=self.filename,
                    line=line,
                    column=col,
                )
        while not self._eof and self._peek() in DIGITS:
            chars.append(self._peek())
            self._advance()
        if not self._eof and self._is_identifier_part(self._peek()):
            raise HRMParseError(
                STATIC_INVALID_SYNTAX,
                f"Malformed number starting with '{''.join(chars)}'",
                filename=self.filename,
                line=line,
                column=col,
            )
        return Token("NUMBER", "".join(chars), line, col)

    def _consume_identifier(self) -> Token:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and self._is_identifier_part(text[self.index]):
            chars.append(text[self.index])
            self._advance()
        return Token("IDENT", "".join(chars), line, col)

    def _consume_define(self, keyword: Token) -> Token:
        """Swallow a whole ``DEFINE <kind> <id> <data>;`` block.

        The data is the game's encoded drawing and may span several lines.
        The token value keeps ``<kind> <id>`` and the data separated by a
        newline so the serializer can write the block back unchanged.
        """
        self._skip_blanks()
        if self._eof or not self._is_identifier_start(self._peek()):
            raise HRMParseError(
                STATIC_INVALID_SYNTAX,
                "Expected COMMENT or LABEL after DEFINE",
                filename=self.filename,
                line=self.line,
                column=self.column,
            )
        kind = self._consume_identifier().value
        if kind not in ("COMMENT", "LABEL"):
            raise HRMParseError(
                STATIC_INVALID_SYNTAX,
                f"Unknown DEFINE kind '{kind}'",
                filename=self.filename,
                line=keyword.line,
                column=keyword.column,
            )
        self._skip_blanks()
        if self._eof or self._peek() not in DIGITS:
            raise HRMParseError(
                STATIC_INVALID_SYNTAX,
                f"Expected numeric id after DEFINE {kind}",
                filename=self.filename,
                line=self.line,
                column=self.column,
            )
        ident = self._consume_number().value
        data: List[str] = []
        while not self._eof and self._peek() != ";":
            data.append(self._peek())
            self._advance()
        if self._eof:
            raise HRMParseError(
                STATIC_INVALID_SYNTAX,
                f"Unterminated DEFINE {kind} {ident} block (missing ';')",
                filename=self.filename,
                line=keyword.line,
                column=keyword.column,
            )
        self._advance()  # consume ';'
        body = "".join(data).replace("\r", "").strip()
        return Token("DEFINE", f"{kind} {ident}\n{body}", keyword.line, keyword.column)

    def _skip_blanks(self) -> None:
        while not self._eof and self._peek() in " \t\r\n":
            self._advance()

    def _is_identifier_start(self, ch: str) -> bool:
        return ch.isalpha() or ch == "_"

    def _is_identifier_part(self, ch: str) -> bool:
        return ch.isalnum() or ch == "_"

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1
