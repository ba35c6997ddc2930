"""Tighten locus bounds from alignment structure alone.

Signals: exon blocks between CIGAR ``N`` introns, clustered splice acceptors
and the bulk alignment extent of the reads.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import AbstractSet, Iterable, Optional

from parapente.bamio import AlignmentRecord, BamReader, PathLike
from parapente.soft_clip import CigarKind

_BLOCK_KINDS = frozenset(
    {
        CigarKind.MATCH,
        CigarKind.SEQUENCE_MATCH,
        CigarKind.SEQUENCE_MISMATCH,
        CigarKind.DELETION,
    }
)


@dataclass
class JunctionRefinementParams:
    """Settings for bounds refinement from alignment cues."""

    max_trim_frac_per_side: float = 0.35
    min_segment_span: int = 500
    include_supplementary: bool = False
    # Minimum distinct reads behind a clustered acceptor (0 disables the anchor).
    min_junction_read_support: int = 3
    junction_cluster_slack_bp: int = 12
    # Clamp to median alignment start/end plus/minus this slack (0 disables).
    read_end_guard_slack_bp: int = 2000
    acceptor_window_left_bp: int = 2500
    acceptor_window_right_bp: int = 1200


def _exon_blocks(record: AlignmentRecord) -> Optional[list[tuple[int, int]]]:
    if record.is_unmapped or record.alignment_start is None:
        return None
    ref_pos = record.alignment_start
    block_start: Optional[int] = None
    blocks = []
    for op in record.cigar:
        if op.kind in _BLOCK_KINDS:
            if block_start is None:
                block_start = ref_pos
            ref_pos += op.length
        elif op.kind is CigarKind.SKIP:
            if block_start is not None and ref_pos > block_start:
                blocks.append((block_start, ref_pos))
            block_start = None
            ref_pos += op.length
    if block_start is not None and ref_pos > block_start:
        blocks.append((block_start, ref_pos))
    return blocks


def _acceptor_sites(record: AlignmentRecord) -> list[int]:
    """First reference base of each exon that follows an intron."""
    if record.is_unmapped or record.alignment_start is None:
        return []
    ref_pos = record.alignment_start
    sites = []
    for op in record.cigar:
        if op.kind in _BLOCK_KINDS:
            ref_pos += op.length
        elif op.kind is CigarKind.SKIP:
            ref_pos += op.length
            sites.append(ref_pos)
    return sites


def _clip_block(block: tuple[int, int], lo: int, hi: int) -> Optional[tuple[int, int]]:
    s, e = max(block[0], lo), min(block[1], hi)
    return (s, e) if e > s else None


def merge_intervals(intervals: Iterable[tuple[int, int]]) -> list[tuple[int, int]]:
    """Merge overlapping or touching half-open intervals."""
    merged: list[tuple[int, int]] = []
    for s, e in sorted(intervals, key=lambda iv: iv[0]):
        if merged and merged[-1][1] >= s:
            last_s, last_e = merged[-1]
            merged[-1] = (last_s, max(last_e, e))
        else:
            merged.append((s, e))
    return merged


def _median(values: Iterable[int]) -> int:
    ordered = sorted(values)
    return ordered[len(ordered) // 2] if ordered else 0


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def cluster_site_support(
    hits: Iterable[tuple[int, str]], slack: int
) -> list[tuple[int, int]]:
    """Cluster positions within ``slack`` of each cluster's first position.

    Returns ``(mean position, distinct read count)`` per cluster.
    """
    ordered = sorted(hits, key=lambda h: h[0])
    clusters = []
    i = 0
    while i < len(ordered):
        anchor = ordered[i][0]
        j = i
        while j < len(ordered) and ordered[j][0] - anchor <= slack:
            j += 1
        members = ordered[i:j]
        center = _trunc_div(sum(pos for pos, _ in members), len(members))
        clusters.append((center, len({name for _, name in members})))
        i = j
    return clusters


def _apply_read_end_guards(
    ns: int, ne: int, starts: list[int], ends: list[int], slack: int
) -> tuple[int, int]:
    if not starts or not ends or slack <= 0:
        return ns, ne
    return min(ns, _median(starts) + slack), max(ne, _median(ends) - slack)


def _apply_acceptor_guard(
    ns: int,
    u_start: int,
    end: int,
    acceptor_hits: list[tuple[int, str]],
    params: JunctionRefinementParams,
) -> int:
    if params.min_junction_read_support == 0 or not acceptor_hits:
        return ns
    low = u_start - params.acceptor_window_left_bp
    high = u_start + params.acceptor_window_right_bp
    candidates = [
        pos
        for pos, support in cluster_site_support(acceptor_hits, params.junction_cluster_slack_bp)
        if support >= params.min_junction_read_support
        and low <= pos <= high
        and 0 <= pos <= end
    ]
    return min(ns, min(candidates)) if candidates else ns


def refine_core_bounds_from_spliced_exons(
    bam_path: PathLike,
    chrom: str,
    start: int,
    end: int,
    read_names: AbstractSet[str],
    params: JunctionRefinementParams,
) -> tuple[int, int]:
    """Refine ``(start, end)``: exon-union trim, read-extent guard, acceptor anchor."""
    if not read_names or end <= start:
        return start, end

    reader = BamReader(bam_path)
    clipped: list[tuple[int, int]] = []
    aln_starts: list[int] = []
    aln_ends: list[int] = []
    acceptor_hits: list[tuple[int, str]] = []

    for record in reader.query(chrom, max(start, 1), max(end, 1)):
        if record.is_unmapped or record.is_secondary:
            continue
        if record.is_supplementary and not params.include_supplementary:
            continue
        if record.name is None or record.name not in read_names:
            continue

        if record.alignment_start is not None:
            aln_starts.append(record.alignment_start)
        if record.alignment_end is not None:
            aln_ends.append(record.alignment_end)

        for block in _exon_blocks(record) or ():
            clipped_block = _clip_block(block, start, end)
            if clipped_block is not None:
                clipped.append(clipped_block)

        acceptor_hits.extend(
            (site, record.name) for site in _acceptor_sites(record) if start <= site <= end
        )

    merged = merge_intervals(clipped)
    if not merged:
        return start, end

    u_start = min(s for s, _ in merged)
    u_end = max(e for _, e in merged)

    max_trim = max(1, math.ceil((end - start) * params.max_trim_frac_per_side))
    left_delta = min(max(u_start - start, 0), max_trim)
    right_delta = min(max(end - u_end, 0), max_trim)
    new_start = start + left_delta
    new_end = end - right_delta

    if new_end - new_start < params.min_segment_span or new_start >= new_end:
        return start, end

    trimmed = (new_start, new_end)

    if params.read_end_guard_slack_bp > 0:
        new_start, new_end = _apply_read_end_guards(
            new_start, new_end, aln_starts, aln_ends, params.read_end_guard_slack_bp
        )

    new_start = _apply_acceptor_guard(new_start, u_start, end, acceptor_hits, params)

    if new_end - new_start < params.min_segment_span or new_start >= new_end:
        return trimmed
    return new_start, new_end