# parapente

Discover paralogous gene-family members from RNA alignments by following where
multi-mapping reads land. Seed reads that belong to a gene family map to every
copy of that family; `parapente` collects those alignments from a BAM file,
groups them into dense read clouds and candidate loci, tightens locus
boundaries from splice structure, and summarises loci by their transcripts.

The package is pure Python and needs nothing outside the standard library.
BAM files are read (and small files written) by the built-in
`parapente.bamio` module.

## What is inside

| Module | Purpose |
| --- | --- |
| `parapente.bamio` | `BamReader` loads a BGZF-compressed BAM file into memory and offers `reference_length`, `fetch` and region `query`; `write_bam` writes records out; `AlignmentRecord`; `BamFormatError` for malformed files |
| `parapente.soft_clip` | CIGAR parsing (`parse_cigar`, `CigarOp`, `CigarKind`) and 5'/3' soft-clip extraction (`three_prime_soft_clip_from_ops`, `three_prime_soft_clip_query_range`, `extract_soft_clip_5p_3p_lens`) |
| `parapente.fast_index` | `build_bam_index` keeps every alignment of every read in a `BamIndex`; `cluster_loci` groups alignments into loci; `reads_in` pools the read names of loci |
| `parapente.read_intern` | `ReadInterner` maps read names to dense integer ids and back |
| `parapente.jaccard_cache` | `compute_jaccard`, a thread-safe `JaccardCache` with hit/miss statistics, the shared `cached_jaccard` and `report_cache_stats` |
| `parapente.isoseq` | Transcript statistics for a region (`analyze_locus_transcripts`) and locus comparison (`compare_loci_isoseq`, `validate_with_isoseq`) |
| `parapente.isoseq_advanced` | Tag-aware features (divergence `de`, identity from `cm`, passes `np`, read quality `rq`, alignment score `AS`) in `AdvancedTranscriptFeatures`, scored with `similarity`; `validate_advanced`; `filter_by_advanced_features` |
| `parapente.junction_refinement` | `refine_core_bounds_from_spliced_exons` trims locus bounds using exon blocks, read extents and clustered splice acceptors; `merge_intervals`, `cluster_site_support` |
| `parapente.optimized_detector` | `batch_collect_reads` gathers read names for many regions with a single reader; `LowMemoryConfig` and `get_optimal_config` |
| `parapente.read_cloud` | `find_read_clouds` finds dense, optionally strand-aware clusters of overlapping seed-read alignments; `find_dense_clouds`, `merge_overlapping_clouds`, `filter_clouds` |

Multi-mapping reads (MAPQ 0, secondary and supplementary alignments) are
kept on purpose: they are the signal that ties paralogs together. Mapping
quality is never used as a filter.

## Examples

Soft clips from a CIGAR string:

```python
from parapente.soft_clip import parse_cigar, three_prime_soft_clip_from_ops

ops = parse_cigar("100M50S10N20M")
three_prime_soft_clip_from_ops(ops, False)   # (100, 150)
```

Finding read clouds for a set of seed reads:

```python
from parapente.read_cloud import filter_clouds, find_read_clouds

clouds = find_read_clouds(
    "sample.bam", seed_reads, ["chr1", "chr7"],
    min_overlap_reads=3, min_cloud_span=500, max_cloud_span=200_000,
    strand_aware=True,
)
clouds = filter_clouds(clouds, min_unique_reads=3, min_density=0.5, require_secondary=False)
```

Clustering every alignment of the seed reads into loci:

```python
from parapente.fast_index import build_bam_index, cluster_loci

index = build_bam_index("sample.bam")
loci = cluster_loci(index.get_alignments_by_chrom(seed_reads),
                    cluster_distance=5_000, min_reads=3)
```

Tightening a locus with splice structure:

```python
from parapente.junction_refinement import (
    JunctionRefinementParams,
    refine_core_bounds_from_spliced_exons,
)

start, end = refine_core_bounds_from_spliced_exons(
    "sample.bam", "chr1", 10_000, 40_000, read_names, JunctionRefinementParams()
)
```

## Notes on BAM input

`BamReader` reads and decompresses the whole file into memory; no `.bai`
index is needed, and region queries scan the records of the requested
chromosome. Asking for a chromosome the header does not list raises
`KeyError`; a file that is not a valid BAM raises `BamFormatError`.

## What it does not do

There is no command-line program: everything is called from Python. The
package also does not link gene regions to one another by shared reads or
pick one representative seed per gene family; it finds and describes loci,
and leaves grouping them into families to the caller.