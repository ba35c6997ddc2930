"""Transcript-structure summaries of loci from long-read alignments."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from parapente.bamio import BamReader, PathLike

_BIN_SIZE = 1000
_ASSUMED_READ_LENGTH = 1000


@dataclass(frozen=True)
class TranscriptAnalysis:
    """Summary statistics of the transcripts in a region."""

    total_transcripts: int
    mean_length: float
    length_std: float
    length_cv: float
    strand_plus: int
    strand_minus: int
    coverage_std: float


def _mean_std(values: Sequence[float]) -> tuple[float, float]:
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return mean, math.sqrt(variance)


def analyze_locus_transcripts(
    bam_path: PathLike, chrom: str, start: int, end: int
) -> TranscriptAnalysis:
    """Count, strand and coverage statistics of transcripts in ``[start, end]``."""
    if end < start:
        raise ValueError(f"region end {end} is before start {start}")
    reader = BamReader(bam_path)

    num_bins = (end - start) // _BIN_SIZE + 1
    coverage = [0] * num_bins
    lengths: list[int] = []
    plus = minus = 0

    for record in reader.query(chrom, max(start, 1), max(end, 1)):
        if record.is_unmapped:
            continue
        read_start = record.alignment_start if record.alignment_start is not None else 0
        read_end = read_start + _ASSUMED_READ_LENGTH
        lengths.append(read_end - read_start)

        if record.is_reverse:
            minus += 1
        else:
            plus += 1

        rs = max(read_start, start)
        re_ = min(read_end, end)
        if rs < re_:
            first = min((rs - start) // _BIN_SIZE, num_bins - 1)
            last = min((re_ - start) // _BIN_SIZE, num_bins - 1)
            for b in range(first, last + 1):
                coverage[b] += 1

    if lengths:
        mean_length, length_std = _mean_std(lengths)
        length_cv = length_std / mean_length if mean_length > 0 else 0.0
    else:
        mean_length = length_std = length_cv = 0.0

    _, coverage_std = _mean_std(coverage)

    return TranscriptAnalysis(
        total_transcripts=len(lengths),
        mean_length=mean_length,
        length_std=length_std,
        length_cv=length_cv,
        strand_plus=plus,
        strand_minus=minus,
        coverage_std=coverage_std,
    )


def compare_loci_isoseq(seed: TranscriptAnalysis, target: TranscriptAnalysis) -> float:
    """Similarity (0-1) of two loci from transcript features; 0 on strand mismatch."""
    seed_strand = "+" if seed.strand_plus > seed.strand_minus else "-"
    target_strand = "+" if target.strand_plus > target.strand_minus else "-"
    if seed_strand != target_strand:
        return 0.0

    if seed.mean_length > 0.0 and target.mean_length > 0.0:
        ratio = seed.mean_length / target.mean_length
        len_score = 1.0 - abs(ratio - 1.0) if 0.7 <= ratio <= 1.43 else 0.0
    else:
        len_score = 0.5

    if seed.length_cv < 0.5 and target.length_cv < 0.5:
        cv_score = 1.0
    elif seed.length_cv < 0.7 and target.length_cv < 0.7:
        cv_score = 0.7
    else:
        cv_score = 0.4

    if target.coverage_std > 50.0:
        coverage_score = 1.0
    elif target.coverage_std > 20.0:
        coverage_score = 0.7
    elif target.coverage_std > 10.0:
        coverage_score = 0.4
    else:
        coverage_score = 0.1

    score = len_score * 0.3 + cv_score * 0.2 + coverage_score * 0.5
    weights = 0.3 + 0.2 + 0.5
    return score / weights


def validate_with_isoseq(
    bam_path: PathLike,
    seed_chrom: str,
    seed_start: int,
    seed_end: int,
    target_chrom: str,
    target_start: int,
    target_end: int,
) -> tuple[float, TranscriptAnalysis, TranscriptAnalysis]:
    """Analyse a seed and a target locus and compare them."""
    seed = analyze_locus_transcripts(bam_path, seed_chrom, seed_start, seed_end)
    target = analyze_locus_transcripts(bam_path, target_chrom, target_start, target_end)
    return compare_loci_isoseq(seed, target), seed, target