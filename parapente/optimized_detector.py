"""Memory-conscious helpers for collecting reads over many regions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from parapente.bamio import BamReader, PathLike


@dataclass(frozen=True)
class LowMemoryConfig:
    """Batch and chunk sizes for low-memory operation."""

    batch_size: int = 100000
    max_chunk_size: int = 1000000


def get_optimal_config() -> LowMemoryConfig:
    """Conservative settings suited to low-powered machines."""
    return LowMemoryConfig(batch_size=50000, max_chunk_size=500000)


def batch_collect_reads(
    bam_path: PathLike, regions: Iterable[tuple[str, int, int]]
) -> list[set[str]]:
    """Names of mapped reads in each ``(chrom, start, end)`` region, one reader for all."""
    reader = BamReader(bam_path)
    return [
        {
            record.name
            for record in reader.query(chrom, max(start, 1), max(end, 1))
            if not record.is_unmapped and record.name is not None
        }
        for chrom, start, end in regions
    ]