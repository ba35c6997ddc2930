import pytest

from parapente.bamio import AlignmentRecord, write_bam
from parapente.junction_refinement import (
    JunctionRefinementParams,
    cluster_site_support,
    merge_intervals,
    refine_core_bounds_from_spliced_exons,
)
from parapente.soft_clip import parse_cigar

REGION_START = 1
REGION_END = 10000
READ_POS = 3001


def _spliced(name, flag=0):
    return AlignmentRecord(
        name=name, flag=flag, chrom="chr1", pos=READ_POS, cigar=parse_cigar("1000M2000N1000M")
    )


@pytest.fixture
def primary_reads():
    return [_spliced(f"r{i}") for i in range(3)]


@pytest.fixture
def bam_path(tmp_path, primary_reads):
    path = tmp_path / "spliced.bam"
    records = primary_reads + [
        AlignmentRecord(
            name="s1", flag=0x100, chrom="chr1", pos=100, cigar=parse_cigar("9000M")
        ),
    ]
    write_bam(path, [("chr1", 50000)], records)
    return path


def test_merge_intervals_overlapping_and_touching():
    assert merge_intervals([(5, 10), (1, 3), (8, 12), (12, 15)]) == [(1, 3), (5, 15)]


def test_merge_intervals_empty():
    assert merge_intervals([]) == []


def test_cluster_site_support_counts_distinct_reads():
    hits = [(100, "a"), (100, "b"), (100, "a"), (500, "c")]
    assert cluster_site_support(hits, 12) == [(100, len({"a", "b"})), (500, len({"c"}))]


def test_cluster_site_support_empty():
    assert cluster_site_support([], 12) == []


def test_cluster_site_support_center_within_cluster():
    hits = [(100, "a"), (105, "b"), (110, "c")]
    (center, support), = cluster_site_support(hits, 12)
    assert 100 <= center <= 110
    assert support == len(hits)


def test_refine_trims_to_exon_union(bam_path, primary_reads):
    names = {r.name for r in primary_reads}
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, names, JunctionRefinementParams()
    )
    read = primary_reads[0]
    assert bounds == (READ_POS, READ_POS + read.reference_span)


def test_refine_without_end_guard(bam_path, primary_reads):
    names = {r.name for r in primary_reads}
    params = JunctionRefinementParams(read_end_guard_slack_bp=0, min_junction_read_support=0)
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, names, params
    )
    assert bounds == (READ_POS, READ_POS + primary_reads[0].reference_span)


def test_refine_limits_trim(bam_path, primary_reads):
    names = {r.name for r in primary_reads}
    params = JunctionRefinementParams(max_trim_frac_per_side=0.1)
    new_start, new_end = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, names, params
    )
    assert REGION_START < new_start < READ_POS
    assert READ_POS + primary_reads[0].reference_span < new_end < REGION_END


def test_refine_empty_names_unchanged(bam_path):
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, set(), JunctionRefinementParams()
    )
    assert bounds == (REGION_START, REGION_END)


def test_refine_inverted_region_unchanged(bam_path):
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_END, REGION_START, {"r0"}, JunctionRefinementParams()
    )
    assert bounds == (REGION_END, REGION_START)


def test_refine_ignores_secondary(bam_path):
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, {"s1"}, JunctionRefinementParams()
    )
    assert bounds == (REGION_START, REGION_END)


def test_refine_unknown_reads_unchanged(bam_path):
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, {"nope"}, JunctionRefinementParams()
    )
    assert bounds == (REGION_START, REGION_END)


def test_refine_short_result_rejected(bam_path, primary_reads):
    names = {r.name for r in primary_reads}
    params = JunctionRefinementParams(min_segment_span=REGION_END)
    bounds = refine_core_bounds_from_spliced_exons(
        bam_path, "chr1", REGION_START, REGION_END, names, params
    )
    assert bounds == (REGION_START, REGION_END)


def test_refine_unknown_chromosome(bam_path):
    with pytest.raises(KeyError):
        refine_core_bounds_from_spliced_exons(
            bam_path, "chrX", REGION_START, REGION_END, {"r0"}, JunctionRefinementParams()
        )