"""Locus validation from long-read alignment quality and structure.

Mapping quality is deliberately never used as a filter: multi-mapping reads
(MAPQ 0) are exactly the evidence gene-family detection relies on.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from parapente.bamio import AlignmentRecord, BamReader, PathLike
from parapente.soft_clip import CigarKind

_BIN_SIZE = 1000
_FALLBACK_READ_LENGTH = 1000
_INT_TAG_TYPES = frozenset({"c", "s", "i"})
_IDENTITY_KINDS = frozenset(
    {
        CigarKind.MATCH,
        CigarKind.SEQUENCE_MATCH,
        CigarKind.SEQUENCE_MISMATCH,
        CigarKind.DELETION,
        CigarKind.SKIP,
    }
)


@dataclass
class AdvancedTranscriptFeatures:
    """Transcript features of a locus, including long-read quality tags."""

    total_transcripts: int
    mean_length: float
    length_cv: float
    strand_plus: int
    strand_minus: int
    coverage_std: float
    mean_divergence: float
    mean_alignment_score: float
    mean_identity: float
    n_full_length: int
    n_partial: int
    intron_count_distribution: dict[int, int] = field(default_factory=dict)
    mean_introns: float = 0.0
    strand_consistency: float = 0.0
    mean_read_quality: float = 0.0
    mean_num_passes: float = 0.0
    chimeric_read_ratio: float = 0.0
    secondary_alignment_ratio: float = 0.0

    def similarity(self, other: "AdvancedTranscriptFeatures") -> float:
        """Weighted similarity (0-1) of ``other`` to this feature set."""
        same_strand = (self.strand_plus > self.strand_minus) == (
            other.strand_plus > other.strand_minus
        )
        strand_score = 1.0 if same_strand else 0.0

        if self.mean_length == 0.0:
            length_score = 0.0
        else:
            ratio = other.mean_length / self.mean_length
            if 0.7 <= ratio <= 1.3:
                length_score = 1.0
            elif 0.5 <= ratio <= 2.0:
                length_score = 0.5
            else:
                length_score = 0.0

        cv_score = 1.0 if other.length_cv < 0.5 else 0.5
        cov_score = 1.0 if other.coverage_std > 50.0 else 0.5

        intron_diff = abs(self.mean_introns - other.mean_introns)
        if intron_diff <= 2.0:
            intron_score = 1.0
        elif intron_diff <= 5.0:
            intron_score = 0.5
        else:
            intron_score = 0.0

        divergence_score = _closeness(abs(self.mean_divergence - other.mean_divergence))
        identity_score = _closeness(abs(self.mean_identity - other.mean_identity))

        return (
            strand_score * 0.25
            + length_score * 0.20
            + cv_score * 0.15
            + cov_score * 0.15
            + intron_score * 0.10
            + divergence_score * 0.10
            + identity_score * 0.05
        )


def _closeness(diff: float) -> float:
    if diff < 0.02:
        return 1.0
    if diff < 0.05:
        return 0.7
    if diff < 0.10:
        return 0.4
    return 0.0


def _int_tag(record: AlignmentRecord, name: str) -> Optional[int]:
    entry = record.tags.get(name)
    if entry is not None and entry[0] in _INT_TAG_TYPES:
        return int(entry[1])
    return None


def _float_tag(record: AlignmentRecord, name: str) -> Optional[float]:
    entry = record.tags.get(name)
    if entry is not None and entry[0] == "f":
        return float(entry[1])
    return None


def _count_introns(record: AlignmentRecord) -> int:
    return sum(1 for op in record.cigar if op.kind is CigarKind.SKIP)


def _identity(record: AlignmentRecord) -> Optional[float]:
    """CIGAR matches (``cm`` tag) over reference-consuming CIGAR length."""
    matches = _int_tag(record, "cm")
    if matches is None:
        return None
    total = sum(op.length for op in record.cigar if op.kind in _IDENTITY_KINDS)
    return matches / total if total > 0 else None


def _mean(values: Sequence[float], default: float) -> float:
    return sum(values) / len(values) if values else default


def _std(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def analyze_advanced_features(
    bam_path: PathLike,
    chrom: str,
    start: int,
    end: int,
    min_mapq: int = 0,
    max_divergence: float = 1.0,
) -> AdvancedTranscriptFeatures:
    """Collect advanced transcript features for ``[start, end]`` on ``chrom``.

    ``min_mapq`` is accepted for interface stability and ignored; reads are
    filtered on divergence (``de`` tag, 1.0 when absent) only.
    """
    if end < start:
        raise ValueError(f"region end {end} is before start {start}")
    reader = BamReader(bam_path)

    num_bins = (end - start) // _BIN_SIZE + 1
    coverage = [0] * num_bins
    lengths: list[float] = []
    divergences: list[float] = []
    alignment_scores: list[float] = []
    identities: list[float] = []
    read_qualities: list[float] = []
    num_passes: list[float] = []
    intron_counts: dict[int, int] = {}
    total = plus = minus = 0
    full_length = partial = 0
    chimeric = secondary = 0

    for record in reader.query(chrom, max(start, 1), max(end, 1)):
        if record.is_unmapped:
            continue
        if record.is_secondary:
            secondary += 1
        if record.is_supplementary:
            chimeric += 1

        div = _float_tag(record, "de")
        if div is None:
            div = 1.0
        if div > max_divergence:
            continue

        total += 1
        read_start = record.alignment_start
        if read_start is None:
            continue
        read_end = record.alignment_end
        if read_end is None:
            read_end = read_start + _FALLBACK_READ_LENGTH

        lengths.append(float(read_end - read_start))
        if record.is_reverse:
            minus += 1
        else:
            plus += 1

        divergences.append(div)
        score = _int_tag(record, "AS")
        if score is not None:
            alignment_scores.append(float(score))
        identity = _identity(record)
        if identity is not None:
            identities.append(identity)
        quality = _float_tag(record, "rq")
        if quality is not None:
            read_qualities.append(quality)
        passes = _int_tag(record, "np")
        if passes is not None:
            num_passes.append(float(passes))

        n_introns = _count_introns(record)
        intron_counts[n_introns] = intron_counts.get(n_introns, 0) + 1
        good_identity = identity is None or identity > 0.95
        if n_introns >= 2 and div < 0.02 and good_identity:
            full_length += 1
        else:
            partial += 1

        first_bin = min(max(read_start - start, 0) // _BIN_SIZE, num_bins - 1)
        last_bin = min(max(read_end - start, 0) // _BIN_SIZE, num_bins - 1)
        for b in range(first_bin, last_bin + 1):
            coverage[b] += 1

    mean_length = _mean(lengths, 0.0)
    length_std = _std(lengths)
    total_introns = sum(n * count for n, count in intron_counts.items())
    observed = total + secondary + chimeric

    return AdvancedTranscriptFeatures(
        total_transcripts=total,
        mean_length=mean_length,
        length_cv=length_std / mean_length if mean_length > 0 else 0.0,
        strand_plus=plus,
        strand_minus=minus,
        coverage_std=_std(coverage),
        mean_divergence=_mean(divergences, 1.0),
        mean_alignment_score=_mean(alignment_scores, 0.0),
        mean_identity=_mean(identities, 0.0),
        n_full_length=full_length,
        n_partial=partial,
        intron_count_distribution=intron_counts,
        mean_introns=total_introns / total if total else 0.0,
        strand_consistency=max(plus, minus) / total if total else 0.0,
        mean_read_quality=_mean(read_qualities, 0.0),
        mean_num_passes=_mean(num_passes, 0.0),
        chimeric_read_ratio=chimeric / observed if observed else 0.0,
        secondary_alignment_ratio=secondary / observed if observed else 0.0,
    )


def validate_advanced(
    bam_path: PathLike,
    seed_chrom: str,
    seed_start: int,
    seed_end: int,
    target_chrom: str,
    target_start: int,
    target_end: int,
    min_mapq: int = 0,
    max_divergence: float = 1.0,
) -> tuple[float, AdvancedTranscriptFeatures, AdvancedTranscriptFeatures]:
    """Analyse seed and target loci and score the target against the seed."""
    seed = analyze_advanced_features(
        bam_path, seed_chrom, seed_start, seed_end, min_mapq, max_divergence
    )
    target = analyze_advanced_features(
        bam_path, target_chrom, target_start, target_end, min_mapq, max_divergence
    )
    return seed.similarity(target), seed, target


def filter_by_advanced_features(
    features: AdvancedTranscriptFeatures,
    min_transcripts: int,
    max_divergence: float,
    min_strand_consistency: float,
) -> bool:
    """Whether a locus looks like a real gene by its transcript features."""
    if features.total_transcripts < min_transcripts:
        return False
    if features.mean_divergence > max_divergence:
        return False
    if features.strand_consistency < min_strand_consistency:
        return False
    if 0.0 < features.mean_identity < 0.90:
        return False
    return True