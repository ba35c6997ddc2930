"""Reading and writing BAM files (BGZF-compressed binary alignments)."""

from __future__ import annotations

import gzip
import os
import struct
import zlib
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional, Union

from parapente.soft_clip import CigarKind, CigarOp

_MAGIC = b"BAM\x01"
_SEQ_ALPHABET = "=ACMGRSVTWYHKDBN"
_BGZF_EOF = bytes.fromhex(
    "1f8b08040000000000ff0600424302001b0003000000000000000000"
)
_BGZF_MAX_BLOCK = 0xFF00
_FIXED = struct.Struct("<iiBBHHHiiii")
_TAG_FORMATS = {
    "c": "b",
    "C": "B",
    "s": "h",
    "S": "H",
    "i": "i",
    "I": "I",
    "f": "f",
}
_UNMAPPED_BIN = 4680

PathLike = Union[str, "os.PathLike[str]"]


class BamFormatError(ValueError):
    """Raised when a file is not a well-formed BAM file."""


@dataclass
class AlignmentRecord:
    """One alignment. ``pos`` is the 1-based alignment start.

    Tags map a two-letter name to ``(type_code, value)``; the type code is the
    BAM type character (``c C s S i I f A Z H B``).  ``B`` arrays hold
    ``(subtype, [values])``.
    """

    name: Optional[str]
    flag: int = 0
    chrom: Optional[str] = None
    pos: Optional[int] = None
    mapq: int = 255
    cigar: list[CigarOp] = field(default_factory=list)
    sequence: str = ""
    tags: dict[str, tuple[str, Any]] = field(default_factory=dict)
    next_chrom: Optional[str] = None
    next_pos: Optional[int] = None
    tlen: int = 0

    @property
    def is_unmapped(self) -> bool:
        return bool(self.flag & 0x4)

    @property
    def is_reverse(self) -> bool:
        return bool(self.flag & 0x10)

    @property
    def is_secondary(self) -> bool:
        return bool(self.flag & 0x100)

    @property
    def is_supplementary(self) -> bool:
        return bool(self.flag & 0x800)

    @property
    def reference_span(self) -> int:
        return sum(op.length for op in self.cigar if op.kind.consumes_reference)

    @property
    def alignment_start(self) -> Optional[int]:
        return self.pos

    @property
    def alignment_end(self) -> Optional[int]:
        """1-based inclusive end, or ``None`` when there is none."""
        span = self.reference_span
        if self.pos is None or span == 0:
            return None
        return self.pos + span - 1


class _Cursor:
    def __init__(self, data: bytes):
        self._data = memoryview(data)
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self.offset

    def take(self, n: int) -> bytes:
        if n < 0 or n > self.remaining:
            raise BamFormatError("unexpected end of BAM data")
        chunk = bytes(self._data[self.offset : self.offset + n])
        self.offset += n
        return chunk

    def unpack(self, fmt: str) -> tuple:
        size = struct.calcsize(fmt)
        return struct.unpack(fmt, self.take(size))

    def take_cstring(self) -> bytes:
        rest = self._data[self.offset :]
        end = bytes(rest).find(b"\x00")
        if end < 0:
            raise BamFormatError("unterminated string in BAM data")
        value = bytes(rest[:end])
        self.offset += end + 1
        return value


def _decode_tags(cur: _Cursor) -> dict[str, tuple[str, Any]]:
    tags: dict[str, tuple[str, Any]] = {}
    while cur.remaining:
        name = cur.take(2).decode("ascii", errors="replace")
        type_code = cur.take(1).decode("ascii", errors="replace")
        if type_code in _TAG_FORMATS:
            (value,) = cur.unpack("<" + _TAG_FORMATS[type_code])
        elif type_code == "A":
            value = cur.take(1).decode("ascii", errors="replace")
        elif type_code in ("Z", "H"):
            value = cur.take_cstring().decode("utf-8", errors="replace")
        elif type_code == "B":
            subtype = cur.take(1).decode("ascii", errors="replace")
            if subtype not in _TAG_FORMATS:
                raise BamFormatError(f"invalid array subtype {subtype!r}")
            (count,) = cur.unpack("<i")
            value = (subtype, list(cur.unpack(f"<{count}{_TAG_FORMATS[subtype]}")))
        else:
            raise BamFormatError(f"invalid tag type {type_code!r}")
        tags[name] = (type_code, value)
    return tags


def _decode_sequence(packed: bytes, length: int) -> str:
    bases = []
    for byte in packed:
        bases.append(_SEQ_ALPHABET[byte >> 4])
        bases.append(_SEQ_ALPHABET[byte & 0x0F])
    return "".join(bases[:length])


def _ref_name(ref_id: int, names: list[str]) -> Optional[str]:
    if ref_id == -1:
        return None
    if not 0 <= ref_id < len(names):
        raise BamFormatError(f"reference id {ref_id} out of range")
    return names[ref_id]


def _decode_record(body: bytes, names: list[str]) -> AlignmentRecord:
    cur = _Cursor(body)
    (
        ref_id,
        pos,
        l_read_name,
        mapq,
        _bin,
        n_cigar,
        flag,
        l_seq,
        next_ref_id,
        next_pos,
        tlen,
    ) = cur.unpack(_FIXED.format)
    raw_name = cur.take(l_read_name).rstrip(b"\x00").decode("utf-8", errors="replace")
    cigar = [
        CigarOp(CigarKind.from_code(value & 0x0F), value >> 4)
        for value in cur.unpack(f"<{n_cigar}I")
    ]
    sequence = _decode_sequence(cur.take((l_seq + 1) // 2), l_seq)
    cur.take(l_seq)
    return AlignmentRecord(
        name=None if raw_name == "*" else raw_name,
        flag=flag,
        chrom=_ref_name(ref_id, names),
        pos=pos + 1 if pos >= 0 else None,
        mapq=mapq,
        cigar=cigar,
        sequence=sequence,
        tags=_decode_tags(cur),
        next_chrom=_ref_name(next_ref_id, names),
        next_pos=next_pos + 1 if next_pos >= 0 else None,
        tlen=tlen,
    )


class BamReader:
    """An in-memory view of a BAM file: header, references and records."""

    def __init__(self, path: PathLike):
        self.path = os.fspath(path)
        with open(self.path, "rb") as handle:
            raw = handle.read()
        try:
            data = gzip.decompress(raw)
        except (OSError, EOFError, zlib.error) as exc:
            raise BamFormatError(f"{self.path}: not BGZF compressed: {exc}") from exc

        cur = _Cursor(data)
        if cur.take(4) != _MAGIC:
            raise BamFormatError(f"{self.path}: bad BAM magic")
        (l_text,) = cur.unpack("<i")
        self.header_text = cur.take(l_text).rstrip(b"\x00").decode("utf-8", errors="replace")
        (n_ref,) = cur.unpack("<i")
        self.references: dict[str, int] = {}
        for _ in range(n_ref):
            (l_name,) = cur.unpack("<i")
            name = cur.take(l_name).rstrip(b"\x00").decode("utf-8", errors="replace")
            (length,) = cur.unpack("<i")
            self.references[name] = length

        names = list(self.references)
        self.records: list[AlignmentRecord] = []
        while cur.remaining:
            (block_size,) = cur.unpack("<i")
            self.records.append(_decode_record(cur.take(block_size), names))

    def _check_chrom(self, chrom: str) -> None:
        if chrom not in self.references:
            raise KeyError(f"Chromosome {chrom} not found")

    def reference_length(self, chrom: str) -> int:
        self._check_chrom(chrom)
        return self.references[chrom]

    def fetch(self, chrom: str) -> Iterator[AlignmentRecord]:
        """All records placed on ``chrom``, in file order."""
        self._check_chrom(chrom)
        return (rec for rec in self.records if rec.chrom == chrom and rec.pos is not None)

    def query(self, chrom: str, start: int, end: int) -> Iterator[AlignmentRecord]:
        """Records on ``chrom`` overlapping the 1-based inclusive ``[start, end]``."""
        for rec in self.fetch(chrom):
            rec_end = rec.alignment_end or rec.pos
            if rec.pos <= end and rec_end >= start:
                yield rec


def _reg2bin(beg: int, end: int) -> int:
    end -= 1
    for shift, offset in ((14, 4681), (17, 585), (20, 73), (23, 9), (26, 1)):
        if beg >> shift == end >> shift:
            return offset + (beg >> shift)
    return 0


def _encode_tags(tags: dict[str, tuple[str, Any]]) -> bytes:
    out = bytearray()
    for name, (type_code, value) in tags.items():
        if len(name) != 2:
            raise ValueError(f"tag name must have two characters: {name!r}")
        out += name.encode("ascii") + type_code.encode("ascii")
        if type_code in _TAG_FORMATS:
            out += struct.pack("<" + _TAG_FORMATS[type_code], value)
        elif type_code == "A":
            out += value.encode("ascii")[:1]
        elif type_code in ("Z", "H"):
            out += value.encode("utf-8") + b"\x00"
        elif type_code == "B":
            subtype, values = value
            if subtype not in _TAG_FORMATS:
                raise ValueError(f"invalid array subtype {subtype!r}")
            out += subtype.encode("ascii") + struct.pack("<i", len(values))
            out += struct.pack(f"<{len(values)}{_TAG_FORMATS[subtype]}", *values)
        else:
            raise ValueError(f"invalid tag type {type_code!r}")
    return bytes(out)


def _encode_sequence(sequence: str) -> bytes:
    codes = [_SEQ_ALPHABET.index(base) if base in _SEQ_ALPHABET else 15 for base in sequence.upper()]
    if len(codes) % 2:
        codes.append(0)
    return bytes((hi << 4) | lo for hi, lo in zip(codes[0::2], codes[1::2]))


def _ref_index(chrom: Optional[str], index: dict[str, int]) -> int:
    if chrom is None:
        return -1
    if chrom not in index:
        raise ValueError(f"record refers to unknown reference {chrom!r}")
    return index[chrom]


def _encode_record(rec: AlignmentRecord, index: dict[str, int]) -> bytes:
    name = (rec.name or "*").encode("utf-8") + b"\x00"
    if len(name) > 255:
        raise ValueError(f"read name too long: {rec.name!r}")
    pos = rec.pos - 1 if rec.pos is not None else -1
    bin_ = _reg2bin(pos, pos + max(rec.reference_span, 1)) if pos >= 0 else _UNMAPPED_BIN
    sequence = "" if rec.sequence == "*" else rec.sequence
    body = _FIXED.pack(
        _ref_index(rec.chrom, index),
        pos,
        len(name),
        rec.mapq,
        bin_,
        len(rec.cigar),
        rec.flag,
        len(sequence),
        _ref_index(rec.next_chrom, index),
        rec.next_pos - 1 if rec.next_pos is not None else -1,
        rec.tlen,
    )
    body += name
    body += b"".join(struct.pack("<I", (op.length << 4) | op.kind.code) for op in rec.cigar)
    body += _encode_sequence(sequence)
    body += b"\xff" * len(sequence)
    body += _encode_tags(rec.tags)
    return struct.pack("<i", len(body)) + body


def _bgzf_block(chunk: bytes) -> bytes:
    compressor = zlib.compressobj(6, zlib.DEFLATED, -15)
    cdata = compressor.compress(chunk) + compressor.flush()
    block_size = len(cdata) + 26
    header = b"\x1f\x8b\x08\x04\x00\x00\x00\x00\x00\xff\x06\x00BC\x02\x00"
    header += struct.pack("<H", block_size - 1)
    return header + cdata + struct.pack("<II", zlib.crc32(chunk), len(chunk))


def write_bam(
    path: PathLike,
    references: Iterable[tuple[str, int]],
    records: Iterable[AlignmentRecord],
) -> None:
    """Write records to a BGZF-compressed BAM file."""
    refs = list(references)
    index = {name: i for i, (name, _) in enumerate(refs)}
    text = "@HD\tVN:1.6\n" + "".join(f"@SQ\tSN:{name}\tLN:{length}\n" for name, length in refs)
    payload = bytearray(_MAGIC)
    payload += struct.pack("<i", len(text)) + text.encode("utf-8")
    payload += struct.pack("<i", len(refs))
    for name, length in refs:
        encoded = name.encode("utf-8") + b"\x00"
        payload += struct.pack("<i", len(encoded)) + encoded + struct.pack("<i", length)
    for rec in records:
        payload += _encode_record(rec, index)

    with open(os.fspath(path), "wb") as handle:
        for offset in range(0, len(payload), _BGZF_MAX_BLOCK):
            handle.write(_bgzf_block(bytes(payload[offset : offset + _BGZF_MAX_BLOCK])))
        handle.write(_BGZF_EOF)