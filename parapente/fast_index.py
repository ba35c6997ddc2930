"""In-memory index of alignments keyed by read name, and locus clustering."""

from __future__ import annotations

import sys
from dataclasses import dataclass, field
from typing import AbstractSet, Iterable, Mapping, Optional

from parapente.bamio import BamReader, PathLike


@dataclass(frozen=True)
class AlignmentSummary:
    """Placement of one alignment of a read."""

    chrom: str
    start: int
    end: int
    is_primary: bool
    is_secondary: bool
    is_supplementary: bool


@dataclass
class BamIndex:
    """All alignments of every read, keyed by read name."""

    index: dict[str, list[AlignmentSummary]] = field(default_factory=dict)
    total_alignments: int = 0

    def get_alignments_by_chrom(
        self, read_names: Iterable[str]
    ) -> dict[str, list[tuple[int, int, str]]]:
        """``(start, end, name)`` of every alignment of the given reads, by chromosome."""
        by_chrom: dict[str, list[tuple[int, int, str]]] = {}
        for name in read_names:
            for aln in self.index.get(name, ()):
                by_chrom.setdefault(aln.chrom, []).append((aln.start, aln.end, name))
        return by_chrom

    def get_alignments(self, read_name: str) -> Optional[list[AlignmentSummary]]:
        return self.index.get(read_name)


def build_bam_index(bam_path: PathLike, include_supplementary: bool = False) -> BamIndex:
    """Index every mapped, named alignment in a BAM file.

    ``include_supplementary`` is accepted for interface stability; supplementary
    alignments are always indexed.
    """
    reader = BamReader(bam_path)
    result = BamIndex()

    for chrom, length in reader.references.items():
        region_end = length if length > 0 else sys.maxsize
        for record in reader.query(chrom, 1, region_end):
            if record.is_unmapped or record.name is None:
                continue
            start = record.alignment_start if record.alignment_start is not None else 0
            end = record.alignment_end if record.alignment_end is not None else start + 1
            summary = AlignmentSummary(
                chrom=chrom,
                start=start,
                end=end,
                is_primary=not record.is_secondary and not record.is_supplementary,
                is_secondary=record.is_secondary,
                is_supplementary=record.is_supplementary,
            )
            result.index.setdefault(record.name, []).append(summary)
            result.total_alignments += 1

    print(
        f"Built BAM index: {len(result.index)} unique reads, "
        f"{result.total_alignments} total alignments"
    )
    return result


def cluster_loci(
    by_chrom: Mapping[str, Iterable[tuple[int, int, str]]],
    cluster_distance: int,
    min_reads: int,
) -> list[tuple[str, int, int, set[str]]]:
    """Cluster alignments into loci ``(chrom, start, end, read names)``."""
    loci: list[tuple[str, int, int, set[str]]] = []

    def emit(chrom: str, cluster: list[tuple[int, int, str]], end: int) -> None:
        if len(cluster) >= min_reads:
            loci.append((chrom, cluster[0][0], end, {name for _, _, name in cluster}))

    for chrom, aligns in by_chrom.items():
        ordered = sorted(aligns, key=lambda a: a[0])
        if not ordered or len(ordered) < min_reads:
            continue

        cluster = [ordered[0]]
        current_end = ordered[0][1]
        for start, end, name in ordered[1:]:
            if start - current_end <= cluster_distance:
                cluster.append((start, end, name))
                current_end = max(current_end, end)
            else:
                emit(chrom, cluster, current_end)
                cluster = [(start, end, name)]
                current_end = end
        emit(chrom, cluster, current_end)

    return loci


def reads_in(loci: Iterable[tuple[str, int, int, AbstractSet[str]]]) -> set[str]:
    """All read names across a collection of loci."""
    return {name for *_, names in loci for name in names}