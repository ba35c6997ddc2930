[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "parapente"
version = "0.2.0"
description = "RNA-based paralog discovery using multi-mapping reads"
requires-python = ">=3.10"
dependencies = []
keywords = ["paralog", "gene-family", "rna-seq", "bioinformatics", "genomics", "bam", "iso-seq"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Bio-Informatics",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["parapente"]

[tool.hatch.build.targets.sdist]
include = ["parapente", "tests"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
