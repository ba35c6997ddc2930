"""Paralog discovery from RNA alignments: BAM reading, read clouds, loci and transcript features."""

__version__ = "0.2.0"