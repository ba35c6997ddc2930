from dataclasses import replace

import pytest

from parapente.bamio import AlignmentRecord, write_bam
from parapente.isoseq_advanced import (
    AdvancedTranscriptFeatures,
    analyze_advanced_features,
    filter_by_advanced_features,
    validate_advanced,
)
from parapente.soft_clip import parse_cigar

SPLICED = "100M200N100M200N100M"


def _rec(name, pos, cigar=SPLICED, flag=0, chrom="chr1", **tags):
    return AlignmentRecord(
        name=name, flag=flag, chrom=chrom, pos=pos, cigar=parse_cigar(cigar), tags=tags
    )


def _features(**overrides):
    base = AdvancedTranscriptFeatures(
        total_transcripts=10,
        mean_length=2000.0,
        length_cv=0.1,
        strand_plus=10,
        strand_minus=0,
        coverage_std=60.0,
        mean_divergence=0.01,
        mean_alignment_score=500.0,
        mean_identity=0.98,
        n_full_length=8,
        n_partial=2,
        intron_count_distribution={3: 10},
        mean_introns=3.0,
        strand_consistency=1.0,
        mean_read_quality=0.99,
        mean_num_passes=12.0,
        chimeric_read_ratio=0.0,
        secondary_alignment_ratio=0.0,
    )
    return replace(base, **overrides)


@pytest.fixture
def bam(tmp_path):
    path = tmp_path / "reads.bam"
    good = {"de": ("f", 0.01), "cm": ("i", 690), "AS": ("i", 400), "np": ("i", 12)}
    records = [
        _rec("r1", 1000, **good),
        _rec("r2", 1050, **good),
        _rec("r3", 1100, **good),
        _rec("r4", 1200, flag=0x100, **good),
        _rec("bad", 1300, de=("f", 0.5)),
        _rec("nodiv", 1400),
        _rec("t1", 5000, cigar="500M", chrom="chr2", de=("f", 0.01)),
    ]
    write_bam(path, [("chr1", 100000), ("chr2", 100000)], records)
    return path


def test_counts_and_divergence_filter(bam):
    f = analyze_advanced_features(bam, "chr1", 500, 5000, 0, 0.1)
    assert f.total_transcripts == 4
    assert f.strand_plus == 4
    assert f.strand_minus == 0
    assert f.strand_consistency == 1.0
    assert f.mean_divergence == pytest.approx(0.01, rel=1e-6)


def test_intron_structure_and_full_length(bam):
    f = analyze_advanced_features(bam, "chr1", 500, 5000, 0, 0.1)
    assert f.intron_count_distribution == {2: 4}
    assert f.mean_introns == 2.0
    assert f.n_full_length == 4
    assert f.n_partial == 0


def test_secondary_ratio_counts_secondary_twice(bam):
    f = analyze_advanced_features(bam, "chr1", 500, 5000, 0, 0.1)
    assert f.secondary_alignment_ratio == pytest.approx(1 / (f.total_transcripts + 1))
    assert f.chimeric_read_ratio == 0.0


def test_tag_means(bam):
    f = analyze_advanced_features(bam, "chr1", 500, 5000, 0, 0.1)
    assert f.mean_alignment_score == 400.0
    assert f.mean_num_passes == 12.0
    assert f.mean_identity == pytest.approx(690 / 700)
    assert f.mean_read_quality == 0.0


def test_missing_divergence_counts_as_one(bam):
    f = analyze_advanced_features(bam, "chr1", 500, 5000, 0, 1.0)
    assert f.total_transcripts == 6


def test_low_identity_read_is_partial(tmp_path):
    path = tmp_path / "low.bam"
    write_bam(
        path,
        [("chr1", 10000)],
        [_rec("x", 1000, de=("f", 0.01), cm=("i", 100))],
    )
    f = analyze_advanced_features(path, "chr1", 500, 3000, 0, 0.1)
    assert f.n_full_length == 0
    assert f.n_partial == 1


def test_empty_region_defaults(bam):
    f = analyze_advanced_features(bam, "chr1", 50000, 60000, 0, 0.1)
    assert f.total_transcripts == 0
    assert f.mean_divergence == 1.0
    assert f.strand_consistency == 0.0
    assert f.intron_count_distribution == {}


def test_reversed_region_raises(bam):
    with pytest.raises(ValueError):
        analyze_advanced_features(bam, "chr1", 5000, 100, 0, 0.1)


def test_unknown_chrom_raises(bam):
    with pytest.raises(KeyError):
        analyze_advanced_features(bam, "chrZ", 1, 100, 0, 0.1)


def test_similarity_identical_is_one():
    f = _features()
    assert f.similarity(f) == pytest.approx(1.0)


def test_similarity_strand_mismatch_loses_strand_weight():
    f = _features()
    other = _features(strand_plus=0, strand_minus=10)
    assert f.similarity(f) - f.similarity(other) == pytest.approx(0.25)


def test_similarity_zero_seed_length_loses_length_weight():
    f = _features()
    zero = _features(mean_length=0.0)
    assert f.similarity(f) - zero.similarity(f) == pytest.approx(0.20)


def test_similarity_is_bounded():
    f = _features()
    far = _features(
        strand_plus=0,
        strand_minus=5,
        mean_length=100000.0,
        length_cv=2.0,
        coverage_std=1.0,
        mean_introns=20.0,
        mean_divergence=0.9,
        mean_identity=0.1,
    )
    score = f.similarity(far)
    assert 0.0 <= score < f.similarity(f)


def test_filter_passes_good_locus():
    assert filter_by_advanced_features(_features(), 5, 0.05, 0.8) is True


@pytest.mark.parametrize(
    "overrides",
    [
        {"total_transcripts": 2},
        {"mean_divergence": 0.2},
        {"strand_consistency": 0.5},
        {"mean_identity": 0.5},
    ],
)
def test_filter_rejects(overrides):
    assert filter_by_advanced_features(_features(**overrides), 5, 0.05, 0.8) is False


def test_filter_ignores_missing_identity():
    assert filter_by_advanced_features(_features(mean_identity=0.0), 5, 0.05, 0.8) is True


def test_validate_advanced_matches_similarity(bam):
    score, seed, target = validate_advanced(
        bam, "chr1", 500, 5000, "chr2", 4000, 7000, 0, 0.1
    )
    assert seed.total_transcripts == 4
    assert target.total_transcripts == 1
    assert score == pytest.approx(seed.similarity(target))