"""Dense clouds of overlapping multi-mapping reads.

Seed reads that truly come from a gene family form dense clouds at paralog
locations, where many of their alignments overlap one another; isolated
single mappings are likely noise.
"""

from __future__ import annotations

import sys
from dataclasses import dataclass, field, replace
from typing import AbstractSet, Iterable, Optional, Sequence

from parapente.bamio import AlignmentRecord, BamReader, PathLike
from parapente.soft_clip import extract_soft_clip_5p_3p_lens

_MAX_SOFT_CLIP_EXTENSION = 5000
_EDGE_WINDOW = 1000
_PASSES_TAG_TYPES = frozenset({"c", "s", "i"})
_NM_TAG_TYPES = frozenset({"c", "C", "s", "i"})


@dataclass(frozen=True)
class ReadAlignment:
    """One alignment of a read with its full extent and quality cues."""

    name: str
    chrom: str
    start: int
    end: int
    is_primary: bool = True
    is_secondary: bool = False
    is_supplementary: bool = False
    strand: str = "+"
    soft_clip_5p: int = 0
    soft_clip_3p: int = 0
    num_passes: int = 0
    nm_tag: int = 0


@dataclass
class ReadCloud:
    """A dense cluster of overlapping reads."""

    chrom: str
    start: int
    end: int
    read_names: set[str] = field(default_factory=set)
    n_primary: int = 0
    n_secondary: int = 0
    n_supplementary: int = 0
    density_score: float = 0.0
    strand: Optional[str] = None

    @property
    def span(self) -> int:
        return self.end - self.start

    @property
    def n_unique_reads(self) -> int:
        return len(self.read_names)


def _int_tag(record: AlignmentRecord, name: str, types: AbstractSet[str]) -> int:
    entry = record.tags.get(name)
    if entry is not None and entry[0] in types:
        return int(entry[1])
    return 0


def collect_all_alignments(
    bam_path: PathLike, target_reads: AbstractSet[str], chroms: Iterable[str]
) -> list[ReadAlignment]:
    """Every primary, secondary and supplementary alignment of the target reads."""
    reader = BamReader(bam_path)
    alignments: list[ReadAlignment] = []

    for chrom in chroms:
        length = reader.reference_length(chrom)
        region_end = length if length > 0 else sys.maxsize
        for record in reader.query(chrom, 1, region_end):
            if record.is_unmapped or record.name is None:
                continue
            if record.name not in target_reads:
                continue
            start = record.alignment_start if record.alignment_start is not None else 0
            end = record.alignment_end if record.alignment_end is not None else start + 1
            clip_5p, clip_3p = extract_soft_clip_5p_3p_lens(record)
            alignments.append(
                ReadAlignment(
                    name=record.name,
                    chrom=chrom,
                    start=start,
                    end=end,
                    is_primary=not record.is_secondary and not record.is_supplementary,
                    is_secondary=record.is_secondary,
                    is_supplementary=record.is_supplementary,
                    strand="-" if record.is_reverse else "+",
                    soft_clip_5p=clip_5p,
                    soft_clip_3p=clip_3p,
                    num_passes=_int_tag(record, "np", _PASSES_TAG_TYPES),
                    nm_tag=_int_tag(record, "NM", _NM_TAG_TYPES),
                )
            )
    return alignments


def _divergence_weight(nm: int) -> float:
    """Reads with more mismatches more likely come from diverged paralogs."""
    if 0 <= nm <= 2:
        return 1.0
    if 3 <= nm <= 5:
        return 1.3
    if 6 <= nm <= 10:
        return 1.6
    return 2.0


def _density(n_reads: int, span: int) -> float:
    return n_reads / (span / 1000.0) if span > 0 else 0.0


def _find_clouds_on_strand(
    alignments: Sequence[ReadAlignment],
    min_overlap_reads: int,
    min_cloud_span: int,
    max_cloud_span: int,
    strand: str,
) -> list[ReadCloud]:
    if not alignments:
        return []

    clouds: list[ReadCloud] = []
    active: list[ReadAlignment] = []
    max_active = 0

    for aln in sorted(alignments, key=lambda a: a.start):
        active = [a for a in active if a.end > aln.start]
        active.append(aln)

        weighted_count = 0.0
        unique_names: set[str] = set()
        for a in active:
            if a.name in unique_names:
                continue
            unique_names.add(a.name)
            full_length_weight = 2.0 if a.num_passes >= 10 else 1.0
            weighted_count += full_length_weight * _divergence_weight(a.nm_tag)

        max_active = max(max_active, len(unique_names))

        if weighted_count < min_overlap_reads:
            continue
        start = min(a.start for a in active)
        end = max(a.end for a in active)
        span = end - start
        if not min_cloud_span <= span <= max_cloud_span:
            continue
        clouds.append(
            ReadCloud(
                chrom=active[0].chrom,
                start=start,
                end=end,
                read_names=unique_names,
                n_primary=sum(a.is_primary for a in active),
                n_secondary=sum(a.is_secondary for a in active),
                n_supplementary=sum(a.is_supplementary for a in active),
                density_score=_density(len(unique_names), span),
                strand=strand,
            )
        )

    print(f"      Max overlapping reads at any position: {max_active}")
    return clouds


def merge_overlapping_clouds(clouds: Iterable[ReadCloud]) -> list[ReadCloud]:
    """Merge clouds on the same chromosome whose extents overlap."""
    ordered = sorted(clouds, key=lambda c: (c.chrom, c.start))
    merged: list[ReadCloud] = []
    current: Optional[ReadCloud] = None

    for cloud in ordered:
        if current is not None and cloud.chrom == current.chrom and cloud.start < current.end:
            current.end = max(current.end, cloud.end)
            current.read_names |= cloud.read_names
            current.n_primary += cloud.n_primary
            current.n_secondary += cloud.n_secondary
            current.n_supplementary += cloud.n_supplementary
            if current.span > 0:
                current.density_score = _density(len(current.read_names), current.span)
        else:
            if current is not None:
                merged.append(current)
            current = replace(cloud, read_names=set(cloud.read_names))
    if current is not None:
        merged.append(current)
    return merged


def _extend_clouds_by_softclips(
    clouds: list[ReadCloud], alignments: Sequence[ReadAlignment]
) -> list[ReadCloud]:
    for cloud in clouds:
        ext_5p = 0
        ext_3p = 0
        for aln in alignments:
            if aln.chrom != cloud.chrom:
                continue
            if abs(aln.start - cloud.start) < _EDGE_WINDOW:
                ext_5p = max(ext_5p, aln.soft_clip_5p)
            if abs(aln.end - cloud.end) < _EDGE_WINDOW:
                ext_3p = max(ext_3p, aln.soft_clip_3p)

        cloud.start -= min(ext_5p, _MAX_SOFT_CLIP_EXTENSION)
        cloud.end += min(ext_3p, _MAX_SOFT_CLIP_EXTENSION)
        if ext_5p > 0 or ext_3p > 0:
            print(f"      Extended cloud by {ext_5p}bp 5' and {ext_3p}bp 3' (soft clips)")
    return clouds


def find_dense_clouds(
    alignments: Sequence[ReadAlignment],
    min_overlap_reads: int,
    min_cloud_span: int,
    max_cloud_span: int,
    strand_aware: bool,
) -> list[ReadCloud]:
    """Dense clouds per chromosome (and per strand), merged and soft-clip extended."""
    if not alignments:
        return []

    by_chrom: dict[str, list[ReadAlignment]] = {}
    for aln in alignments:
        by_chrom.setdefault(aln.chrom, []).append(aln)

    print(f"    Processing {len(by_chrom)} chromosomes...")
    for chrom, aligns in by_chrom.items():
        print(f"      {chrom}: {len(aligns)} alignments")

    clouds: list[ReadCloud] = []
    for chrom, aligns in by_chrom.items():
        if strand_aware:
            plus = [a for a in aligns if a.strand == "+"]
            minus = [a for a in aligns if a.strand == "-"]
            print(f"      {chrom}: {len(plus)} (+) / {len(minus)} (-) alignments by strand")
            for strand, group in (("+", plus), ("-", minus)):
                clouds.extend(
                    _find_clouds_on_strand(
                        group, min_overlap_reads, min_cloud_span, max_cloud_span, strand
                    )
                )
        else:
            clouds.extend(
                _find_clouds_on_strand(
                    aligns, min_overlap_reads, min_cloud_span, max_cloud_span, "+"
                )
            )

    print(f"    Total clouds created before merge: {len(clouds)}")
    return _extend_clouds_by_softclips(merge_overlapping_clouds(clouds), alignments)


def find_read_clouds(
    bam_path: PathLike,
    seed_reads: AbstractSet[str],
    chroms: Iterable[str],
    min_overlap_reads: int,
    min_cloud_span: int,
    max_cloud_span: int,
    strand_aware: bool,
) -> list[ReadCloud]:
    """Find read clouds formed by all alignments of a set of seed reads."""
    print(f"  Collecting all alignments for {len(seed_reads)} seed reads...")
    if strand_aware:
        print("  Using strand-aware cloud detection")

    alignments = collect_all_alignments(bam_path, seed_reads, chroms)
    print(f"  Found {len(alignments)} total alignments:")
    print(f"    Primary: {sum(a.is_primary for a in alignments)}")
    print(f"    Secondary: {sum(a.is_secondary for a in alignments)}")
    print(f"    Supplementary: {sum(a.is_supplementary for a in alignments)}")
    print(f"  Finding dense read clouds (min {min_overlap_reads} overlapping reads)...")

    clouds = find_dense_clouds(
        alignments, min_overlap_reads, min_cloud_span, max_cloud_span, strand_aware
    )
    print(f"  Found {len(clouds)} read clouds")
    for i, cloud in enumerate(clouds, start=1):
        print(
            f"    Cloud {i}: {cloud.chrom}:{cloud.start}-{cloud.end} "
            f"(span: {cloud.span} bp, {cloud.n_unique_reads} unique reads, "
            f"density: {cloud.density_score:.2f} reads/kb)"
        )
    return clouds


def filter_clouds(
    clouds: Iterable[ReadCloud],
    min_unique_reads: int,
    min_density: float,
    require_secondary: bool,
) -> list[ReadCloud]:
    """Keep clouds with enough reads, enough density and, optionally, secondaries."""
    return [
        c
        for c in clouds
        if c.n_unique_reads >= min_unique_reads
        and c.density_score >= min_density
        and not (require_secondary and c.n_secondary == 0)
    ]