"""CIGAR operations and 3' / 5' soft-clip handling in query coordinates.

Plus strand: the 3' clip is usually the last ``S`` operation; when the last
operation is not ``S`` the rightmost soft-clip block in query order is used
(handles ``100M50S10N20M`` style intronic tails).  Minus strand: the 3' clip
is only a leading ``S`` (first operation).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence


class CigarKind(Enum):
    """Kind of a CIGAR operation, valued by its SAM character."""

    MATCH = "M"
    INSERTION = "I"
    DELETION = "D"
    SKIP = "N"
    SOFT_CLIP = "S"
    HARD_CLIP = "H"
    PAD = "P"
    SEQUENCE_MATCH = "="
    SEQUENCE_MISMATCH = "X"

    @property
    def consumes_read(self) -> bool:
        return self in _READ_CONSUMING

    @property
    def consumes_reference(self) -> bool:
        return self in _REFERENCE_CONSUMING

    @property
    def code(self) -> int:
        """Numeric operation code used in binary alignment records."""
        return _OP_CHARS.index(self.value)

    @classmethod
    def from_code(cls, code: int) -> "CigarKind":
        if not 0 <= code < len(_OP_CHARS):
            raise ValueError(f"invalid CIGAR operation code: {code}")
        return cls(_OP_CHARS[code])


_OP_CHARS = "MIDNSHP=X"

_READ_CONSUMING = frozenset(
    {
        CigarKind.MATCH,
        CigarKind.INSERTION,
        CigarKind.SOFT_CLIP,
        CigarKind.SEQUENCE_MATCH,
        CigarKind.SEQUENCE_MISMATCH,
    }
)

_REFERENCE_CONSUMING = frozenset(
    {
        CigarKind.MATCH,
        CigarKind.DELETION,
        CigarKind.SKIP,
        CigarKind.SEQUENCE_MATCH,
        CigarKind.SEQUENCE_MISMATCH,
    }
)

_CIGAR_RE = re.compile(r"(?:\d+[MIDNSHP=X])*")
_CIGAR_OP_RE = re.compile(r"(\d+)([MIDNSHP=X])")


@dataclass(frozen=True)
class CigarOp:
    """One CIGAR operation: a kind and a length."""

    kind: CigarKind
    length: int

    def __str__(self) -> str:
        return f"{self.length}{self.kind.value}"

    @property
    def query_bases(self) -> int:
        return self.length if self.kind.consumes_read else 0


def parse_cigar(text: str) -> list[CigarOp]:
    """Parse a SAM CIGAR string; ``*`` or an empty string gives no operations."""
    if text in ("", "*"):
        return []
    if not _CIGAR_RE.fullmatch(text):
        raise ValueError(f"invalid CIGAR string: {text!r}")
    return [
        CigarOp(CigarKind(kind), int(length))
        for length, kind in _CIGAR_OP_RE.findall(text)
    ]


class _ClippedRecord(Protocol):
    cigar: Iterable[CigarOp]

    @property
    def is_reverse(self) -> bool: ...


def _soft_clip_segments(ops: Sequence[CigarOp]) -> list[tuple[int, int]]:
    """All soft-clip intervals in query order (5' to 3' along SEQ)."""
    segments = []
    query_pos = 0
    for op in ops:
        if op.kind is CigarKind.SOFT_CLIP:
            segments.append((query_pos, query_pos + op.length))
        query_pos += op.query_bases
    return segments


def three_prime_soft_clip_from_ops(
    ops: Sequence[CigarOp], reverse: bool
) -> Optional[tuple[int, int]]:
    """Query interval ``[start, end)`` of the 3' soft clip, or ``None``."""
    if not ops:
        return None
    if reverse:
        first = ops[0]
        if first.kind is CigarKind.SOFT_CLIP:
            return (0, first.length)
        return None

    last = ops[-1]
    if last.kind is CigarKind.SOFT_CLIP:
        start = sum(op.query_bases for op in ops[:-1])
        return (start, start + last.length)

    segments = _soft_clip_segments(ops)
    if not segments:
        return None
    best = max(segments, key=lambda seg: seg[0])
    if len(segments) == 1 and best[0] == 0:
        return None
    return best


def three_prime_soft_clip_query_range(
    record: _ClippedRecord,
) -> Optional[tuple[int, int]]:
    """3' soft-clip query interval of an alignment record."""
    ops = list(record.cigar)
    if not ops:
        return None
    return three_prime_soft_clip_from_ops(ops, record.is_reverse)


def extract_soft_clip_5p_3p_lens(record: _ClippedRecord) -> tuple[int, int]:
    """(5' soft-clip length, 3' soft-clip length) in read orientation."""
    ops = list(record.cigar)
    if not ops:
        return (0, 0)
    first, last = ops[0], ops[-1]
    if not record.is_reverse:
        five = first.length if first.kind is CigarKind.SOFT_CLIP else 0
        three_range = three_prime_soft_clip_from_ops(ops, False)
        three = three_range[1] - three_range[0] if three_range else 0
        return (five, three)
    five = last.length if last.kind is CigarKind.SOFT_CLIP else 0
    three = first.length if first.kind is CigarKind.SOFT_CLIP else 0
    return (five, three)