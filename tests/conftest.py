"""Shared test fixtures for snpsea."""

import gzip
from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pytest

from snpsea.intervals import GenomicInterval, IntervalIndex
from snpsea.matrix import build_specificity_matrix

NUM_GENES = 40
NUM_CONDITIONS = 3


@pytest.fixture
def small_values():
    """3 genes x 2 conditions, quantitative."""
    return np.array([[1.0, 0.5], [0.2, 0.2], [0.9, 0.1]])


@pytest.fixture
def small_matrix(small_values):
    """Specificity matrix of small_values: percentiles [[2/3, 2/3], [1, 1/3], [1/3, 1]]."""
    return build_specificity_matrix(small_values, ['g0', 'g1', 'g2'], ['c0', 'c1'])


@pytest.fixture
def small_gene_intervals():
    """g0 and g2 sit close together; g1 is further along chr1."""
    return [
        ('g0', GenomicInterval('chr1', 100, 200)),
        ('g1', GenomicInterval('chr1', 1000, 1100)),
        ('g2', GenomicInterval('chr1', 300, 400)),
    ]


@pytest.fixture
def small_index(small_gene_intervals):
    return IntervalIndex.build(small_gene_intervals, ['g0', 'g1', 'g2'])


@pytest.fixture
def small_snp_intervals():
    """s0 overlaps {g0, g2}; n0 overlaps {g0, g2}; n1 overlaps {g1, g2}; n2 overlaps all genes."""
    return {
        's0': GenomicInterval('chr1', 150, 350),
        'n0': GenomicInterval('chr1', 150, 350),
        'n1': GenomicInterval('chr1', 350, 1050),
        'n2': GenomicInterval('chr1', 190, 1050),
    }


@pytest.fixture
def dataset():
    """A gene matrix with genes spaced 1000 bases apart on chr1, and SNPs around them.

    rs{i} overlaps gene i only; rs_pair{i} overlaps genes i and i + 1; rs_far
    is on a chromosome without genes.
    """
    rng = np.random.default_rng(0)
    row_names = [f"gene{i}" for i in range(NUM_GENES)]
    col_names = [f"cond{j}" for j in range(NUM_CONDITIONS)]
    values = rng.random((NUM_GENES, NUM_CONDITIONS))

    gene_intervals = [
        (name, GenomicInterval('chr1', 1000 * i + 1, 1000 * i + 500))
        for i, name in enumerate(row_names)
    ]

    snp_intervals = {}
    for i in range(NUM_GENES):
        snp_intervals[f"rs{i}"] = GenomicInterval('chr1', 1000 * i + 100, 1000 * i + 100)
    for i in range(NUM_GENES - 1):
        snp_intervals[f"rs_pair{i}"] = GenomicInterval('chr1', 1000 * i + 400, 1000 * (i + 1) + 100)
    snp_intervals['rs_far'] = GenomicInterval('chr2', 100, 100)

    return {
        'values': values,
        'row_names': row_names,
        'col_names': col_names,
        'gene_intervals': gene_intervals,
        'snp_intervals': snp_intervals,
        'null_snps': set(snp_intervals),
        'snps': {'rs3', 'rs10', 'rs21', 'rs_pair20', 'rs_far', 'rs_missing'},
    }


def _write_gct(path: Path, values: np.ndarray, row_names: List[str], col_names: List[str]):
    lines = ['#1.2', f"{len(row_names)}\t{len(col_names)}", '\t'.join(['Name', 'Description'] + col_names)]
    for name, row in zip(row_names, values):
        lines.append('\t'.join([name, 'NA'] + [repr(float(x)) for x in row]))
    path.write_text('\n'.join(lines) + '\n')


def _write_bed(path: Path, intervals: List[Tuple[str, GenomicInterval]], compress: bool = False):
    text = ''.join(f"{iv.chrom}\t{iv.start}\t{iv.end}\t{name}\n" for name, iv in intervals)
    if compress:
        with gzip.open(path, 'wt') as f:
            f.write(text)
    else:
        path.write_text(text)


@pytest.fixture
def snpsea_files(tmp_path, dataset) -> Dict[str, str]:
    """Input files for dataset, written to tmp_path."""
    gene_matrix = tmp_path / 'matrix.gct'
    gene_intervals = tmp_path / 'genes.bed.gz'
    snp_intervals = tmp_path / 'snps.bed'
    snps = tmp_path / 'snps.txt'
    null_snps = tmp_path / 'null_snps.txt'

    _write_gct(gene_matrix, dataset['values'], dataset['row_names'], dataset['col_names'])
    _write_bed(gene_intervals, dataset['gene_intervals'], compress=True)
    _write_bed(snp_intervals, sorted(dataset['snp_intervals'].items()))
    snps.write_text('# SNPs to test\n' + '\n'.join(sorted(dataset['snps'])) + '\n')
    null_snps.write_text('SNP\tP\n' + ''.join(f"{name}\t0.5\n" for name in sorted(dataset['null_snps'])))

    return {
        'snps': str(snps),
        'gene_matrix': str(gene_matrix),
        'gene_intervals': str(gene_intervals),
        'snp_intervals': str(snp_intervals),
        'null_snps': str(null_snps),
        'out': str(tmp_path / 'out'),
    }
