import gzip

import pytest

from parapente.bamio import AlignmentRecord, BamFormatError, BamReader, write_bam
from parapente.soft_clip import parse_cigar

REFS = [("chr1", 50000), ("chr2", 20000)]


def _records():
    return [
        AlignmentRecord(
            name="r1",
            flag=0,
            chrom="chr1",
            pos=100,
            mapq=60,
            cigar=parse_cigar("10M5N10M"),
            sequence="ACGTACGTACGTACGTACGT",
            tags={"NM": ("i", 3), "de": ("f", 0.5), "np": ("c", 12), "xa": ("B", ("i", [1, 2, 3]))},
        ),
        AlignmentRecord(
            name="r2",
            flag=0x110,
            chrom="chr1",
            pos=1000,
            mapq=0,
            cigar=parse_cigar("5S20M"),
            sequence="A" * 25,
            tags={"rq": ("f", 0.25), "ZZ": ("Z", "hello"), "ch": ("A", "x")},
        ),
        AlignmentRecord(name="r3", flag=0x800, chrom="chr2", pos=50, cigar=parse_cigar("30M")),
        AlignmentRecord(name="u1", flag=0x4),
    ]


@pytest.fixture
def bam_path(tmp_path):
    path = tmp_path / "reads.bam"
    write_bam(path, REFS, _records())
    return path


def test_round_trip_records(bam_path):
    reader = BamReader(bam_path)
    assert reader.records == _records()
    assert reader.references == dict(REFS)


def test_reference_length(bam_path):
    reader = BamReader(bam_path)
    assert reader.reference_length("chr2") == 20000


def test_unknown_chromosome_raises(bam_path):
    reader = BamReader(bam_path)
    with pytest.raises(KeyError):
        reader.reference_length("chrX")
    with pytest.raises(KeyError):
        list(reader.query("chrX", 1, 10))


def test_alignment_end_counts_skips(bam_path):
    r1 = BamReader(bam_path).records[0]
    assert r1.alignment_start == 100
    assert r1.alignment_end == 124


def test_query_overlap_boundaries(bam_path):
    reader = BamReader(bam_path)
    r1_end = reader.records[0].alignment_end
    assert [r.name for r in reader.query("chr1", r1_end, r1_end)] == ["r1"]
    assert [r.name for r in reader.query("chr1", r1_end + 1, 999)] == []
    assert [r.name for r in reader.query("chr1", 1, 50000)] == ["r1", "r2"]
    assert [r.name for r in reader.query("chr2", 1, 50)] == ["r3"]


def test_fetch_skips_unplaced(bam_path):
    reader = BamReader(bam_path)
    names = [r.name for ref in reader.references for r in reader.fetch(ref)]
    assert names == ["r1", "r2", "r3"]


def test_flag_properties(bam_path):
    r1, r2, r3, u1 = BamReader(bam_path).records
    assert r2.is_reverse and r2.is_secondary and not r2.is_supplementary
    assert r3.is_supplementary and not r3.is_reverse
    assert u1.is_unmapped and u1.pos is None and u1.alignment_end is None
    assert not r1.is_unmapped


def test_file_is_bgzf_with_eof_marker(bam_path):
    raw = bam_path.read_bytes()
    assert raw.startswith(b"\x1f\x8b\x08\x04")
    assert raw.endswith(
        bytes.fromhex("1f8b08040000000000ff0600424302001b0003000000000000000000")
    )
    assert gzip.decompress(raw)[:4] == b"BAM\x01"


def test_many_records_span_blocks(tmp_path):
    path = tmp_path / "many.bam"
    records = [
        AlignmentRecord(
            name=f"read_{i:06d}_" + "x" * 40,
            chrom="chr1",
            pos=i + 1,
            cigar=parse_cigar("50M"),
            sequence="ACGT" * 25,
        )
        for i in range(3000)
    ]
    write_bam(path, REFS, records)
    reader = BamReader(path)
    assert reader.records == records


def test_not_gzip_raises(tmp_path):
    path = tmp_path / "bad.bam"
    path.write_bytes(b"this is not a bam file")
    with pytest.raises(BamFormatError):
        BamReader(path)


def test_bad_magic_raises(tmp_path):
    path = tmp_path / "bad.bam"
    path.write_bytes(gzip.compress(b"SAM\x01" + b"\x00" * 8))
    with pytest.raises(BamFormatError):
        BamReader(path)


def test_truncated_raises(tmp_path, bam_path):
    data = gzip.decompress(bam_path.read_bytes())
    path = tmp_path / "trunc.bam"
    path.write_bytes(gzip.compress(data[:-5]))
    with pytest.raises(BamFormatError):
        BamReader(path)


def test_write_unknown_reference_raises(tmp_path):
    rec = AlignmentRecord(name="r", chrom="chrZ", pos=1, cigar=parse_cigar("5M"))
    with pytest.raises(ValueError):
        write_bam(tmp_path / "x.bam", REFS, [rec])