"""
Tables describing the tested SNPs: their genes, their best gene per column, and p-values.
"""
from dataclasses import asdict
from typing import Dict, List, Mapping, Sequence

import numpy as np
import polars as pl

from .genesets import GenesetResolution
from .intervals import GenomicInterval
from .matrix import SpecificityMatrix
from .montecarlo import PValueRecord
from .scoring import best_gene_scores

SNP_GENES_SCHEMA = {
    'chrom': pl.Utf8,
    'start': pl.Int64,
    'end': pl.Int64,
    'snp': pl.Utf8,
    'n_genes': pl.Int64,
    'genes': pl.Utf8,
}


def locus_interval(name: str, locus_intervals: Mapping[str, GenomicInterval]) -> GenomicInterval:
    """Interval of a locus; a merged locus spans from the smallest start to the largest end."""
    members = [locus_intervals[snp] for snp in name.split(',')]
    return GenomicInterval(
        members[0].chrom,
        min(iv.start for iv in members),
        max(iv.end for iv in members),
    )


def snp_genes_report(resolution: GenesetResolution,
                     merged: Mapping[str, Sequence[int]],
                     locus_intervals: Mapping[str, GenomicInterval],
                     row_names: Sequence[str]) -> pl.DataFrame:
    """One row per tested SNP or merged locus with its interval and genes.

    SNPs without an interval have null interval and gene columns; SNPs that
    overlap no genes have n_genes = 0 and null genes.

    Args:
        resolution: result of resolving the tested SNPs
        merged: merged locus name -> gene row indices
        locus_intervals: SNP name -> interval
        row_names: gene names

    Returns:
        DataFrame with columns chrom, start, end, snp, n_genes, genes
    """
    rows: Dict[str, List] = {key: [] for key in SNP_GENES_SCHEMA}

    def add(chrom, start, end, snp, n_genes, genes):
        for key, value in zip(SNP_GENES_SCHEMA, (chrom, start, end, snp, n_genes, genes)):
            rows[key].append(value)

    for snp in sorted(resolution.absent):
        add(None, None, None, snp, None, None)

    for snp in sorted(resolution.naked):
        iv = locus_intervals[snp]
        add(iv.chrom, iv.start, iv.end, snp, 0, None)

    for name, genes in merged.items():
        iv = locus_interval(name, locus_intervals)
        add(iv.chrom, iv.start, iv.end, name, len(genes), ','.join(row_names[g] for g in genes))

    return pl.DataFrame(rows, schema=SNP_GENES_SCHEMA)


def condition_scores_report(matrix: SpecificityMatrix,
                            merged: Mapping[str, Sequence[int]]) -> pl.DataFrame:
    """Most specific gene of each locus in each column, with its score.

    For a binary matrix the gene column is empty and the score is the binomial
    probability of the locus's count of genes present in the column.

    Returns:
        DataFrame with columns snp, condition, gene, score
    """
    snps, conditions, genes, scores = [], [], [], []
    for name, geneset in merged.items():
        best, locus_scores = best_gene_scores(matrix, geneset)
        snps.extend([name] * matrix.num_cols)
        conditions.extend(matrix.col_names)
        genes.extend(matrix.row_names[g] if g >= 0 else None for g in best)
        scores.extend(np.asarray(locus_scores, dtype=np.float64).tolist())

    return pl.DataFrame(
        {'snp': snps, 'condition': conditions, 'gene': genes, 'score': scores},
        schema={'snp': pl.Utf8, 'condition': pl.Utf8, 'gene': pl.Utf8, 'score': pl.Float64},
    )


def records_to_frame(records: Sequence[PValueRecord], replicates: bool = False) -> pl.DataFrame:
    """P-value records as a DataFrame; the replicate column is kept only if replicates is True."""
    schema = {
        'condition': pl.Utf8,
        'pvalue': pl.Float64,
        'nulls_observed': pl.Int64,
        'nulls_tested': pl.Int64,
        'replicate': pl.Int64,
    }
    df = pl.DataFrame([asdict(record) for record in records], schema=schema)
    if not replicates:
        df = df.drop('replicate')
    return df
