from __future__ import annotations

import re

"""Spreadsheet-style column letters (1-based, base-26 without zero).

1 -> A, 26 -> Z, 27 -> AA, 702 -> ZZ, 703 -> AAA, 18278 -> ZZZ.
Used when naming blank headers (Col_<letter>) and when recording which
physical column a FieldMapping came from.
"""

__all__ = [
    "column_letter",
    "column_index",
    "blank_header_name",
]

_LETTERS_RE = re.compile(r"^[A-Z]+$")


def column_letter(index: int) -> str:
    """Encode a 1-based column index as letters."""
    if index < 1:
        raise ValueError(f"column index must be >= 1: {index}")
    letters: list[str] = []
    n = index
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters.append(chr(ord("A") + rem))
    return "".join(reversed(letters))


def column_index(letter: str) -> int:
    """Decode letters back to a 1-based column index (inverse of column_letter)."""
    text = letter.strip().upper()
    if not _LETTERS_RE.match(text):
        raise ValueError(f"invalid column letter: {letter!r}")
    n = 0
    for ch in text:
        n = n * 26 + (ord(ch) - ord("A") + 1)
    return n


def blank_header_name(index: int) -> str:
    """Placeholder used for blank / whitespace-only header cells."""
    return f"Col_{column_letter(index)}"
