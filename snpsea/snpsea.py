"""
Run SNPsea: test whether a set of SNPs is enriched for genes specific to each
column of a gene matrix.
"""
import logging
import os
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np
import polars as pl

from .genesets import (
    MATCHED,
    RANDOM,
    GenesetPool,
    GenesetResolution,
    NullSampler,
    merge_loci,
    random_loci,
    resolve_genesets,
)
from .intervals import GenomicInterval, IntervalIndex
from .io import (
    read_bed_intervals,
    read_gct,
    read_gene_intervals,
    read_names,
    write_args,
    write_condition_scores,
    write_pvalues,
    write_snp_genes,
)
from .matrix import SpecificityMatrix, build_specificity_matrix, missing_conditions
from .montecarlo import RANDOM_SET_STREAM, EnrichmentTester, PValueRecord, draw_rng, replicate_genesets
from .options import ConfigurationError, EnrichmentOptions, parse_random_count
from .reports import condition_scores_report, snp_genes_report

PathLike = Union[str, os.PathLike]

CONDITION_PVALUES = 'condition_pvalues.txt'
NULL_PVALUES = 'null_pvalues.txt'
SNP_GENES = 'snp_genes.txt'
SNP_CONDITION_SCORES = 'snp_condition_scores.txt'
ARGS = 'args.txt'
LOG = 'log.txt'


@dataclass
class EnrichmentResult:
    """Everything produced by one run.

    Attributes:
        records: one p-value per column for the tested SNP set
        null_records: one p-value per column for each null replicate
        snp_genes: genes of each tested SNP or merged locus
        condition_scores: most specific gene of each locus in each column
        matrix: the specificity matrix that was tested
        resolution: tested SNPs, split into resolved, absent and naked
        merged: merged locus name -> gene row indices
        mode: 'matched' for a given SNP set, 'random' for a randomN SNP set
        seed: seed used for every random draw
        missing_genes: matrix genes removed because they have no interval
    """
    records: List[PValueRecord]
    null_records: List[PValueRecord]
    snp_genes: pl.DataFrame
    condition_scores: pl.DataFrame
    matrix: SpecificityMatrix
    resolution: GenesetResolution
    merged: Dict[str, np.ndarray]
    mode: str
    seed: int
    missing_genes: List[str] = field(default_factory=list)


def resolve_seed(seed: Optional[int]) -> int:
    """Use seed if given, otherwise fresh entropy; logged either way so the run can be repeated."""
    if seed is None:
        seed = int(np.random.SeedSequence().entropy)
    logging.info(f"Random seed: {seed}")
    return seed


def align_genes(values: np.ndarray,
                row_names: Sequence[str],
                gene_intervals: Sequence[Tuple[str, GenomicInterval]],
                ) -> Tuple[np.ndarray, List[str], List[str]]:
    """Remove matrix rows whose gene has no interval.

    Returns:
        Tuple of (values, row_names, removed gene names)
    """
    with_intervals = {name for name, _ in gene_intervals}
    keep = [i for i, name in enumerate(row_names) if name in with_intervals]
    removed = [name for name in row_names if name not in with_intervals]
    if removed:
        logging.warning(f"Removed {len(removed)} genes from the gene matrix because they have no gene interval")
    if not keep:
        raise ValueError("None of the genes in the gene matrix have a gene interval")
    return np.asarray(values)[keep, :], [row_names[i] for i in keep], removed


def _test_loci(matrix: SpecificityMatrix,
               pool: GenesetPool,
               merged: Mapping[str, np.ndarray],
               mode: str,
               options: EnrichmentOptions,
               seed: int,
               on_record: Optional[Callable[[PValueRecord], None]]) -> List[PValueRecord]:
    """Test the merged loci and their null replicates against every column."""
    if mode == MATCHED:
        sampler = NullSampler(pool, MATCHED, sizes=[len(genes) for genes in merged.values()])
        for size in sorted(set(sampler.sizes)):
            logging.info(f"{sampler.sizes.count(size)} loci sample from {pool.bin_size(size)} "
                         f"null SNPs with {size}{'+' if size == pool.max_genes else ''} genes")
    else:
        sampler = NullSampler(pool, RANDOM, num_loci=len(merged))

    snp_sets = [(None, list(merged.values()))]
    snp_sets.extend(
        (replicate, replicate_genesets(sampler, seed, replicate))
        for replicate in range(options.null_replicates)
    )
    logging.info(f"Testing {matrix.num_cols} columns for {len(snp_sets)} SNP sets "
                 f"with up to {options.max_iterations} null SNP sets each")

    start_time = time.time()
    records = EnrichmentTester.test(matrix, pool, sampler, snp_sets, options, seed, on_record=on_record)
    logging.info(f"Tested all columns in {time.time() - start_time:.2f}s")
    return records


def run_enrichment(snps: Union[Iterable[str], int],
                   values: np.ndarray,
                   row_names: Sequence[str],
                   col_names: Sequence[str],
                   gene_intervals: Iterable[Tuple[str, GenomicInterval]],
                   snp_intervals: Mapping[str, GenomicInterval],
                   null_snps: Iterable[str],
                   condition_names: Optional[Iterable[str]] = None,
                   options: Optional[EnrichmentOptions] = None,
                   on_record: Optional[Callable[[PValueRecord], None]] = None,
                   ) -> EnrichmentResult:
    """Test a SNP set for enrichment in every column of a gene matrix.

    Args:
        snps: names of the SNPs to test, or a number N to test N random null SNPs
        values: (num_genes, num_columns) gene matrix
        row_names: gene names
        col_names: column names
        gene_intervals: (gene name, interval) pairs
        snp_intervals: SNP name -> interval
        null_snps: names of SNPs to sample null SNP sets from
        condition_names: columns to condition on and remove
        options: run configuration
        on_record: called with each p-value record as soon as it is complete

    Returns:
        EnrichmentResult

    Raises:
        ConfigurationError: if the configuration is invalid; raised before any sampling
    """
    options = options or EnrichmentOptions()
    seed = resolve_seed(options.seed)
    gene_intervals = list(gene_intervals)

    values, row_names, missing_genes = align_genes(values, list(row_names), gene_intervals)
    index = IntervalIndex.build(gene_intervals, row_names)
    matrix = build_specificity_matrix(values, row_names, col_names, condition_names)

    null_snps = set(null_snps)
    pool = GenesetPool.build(null_snps, snp_intervals, index, options.slop, options.max_genes)
    num_absent = sum(1 for name in null_snps if name not in snp_intervals)
    if num_absent:
        logging.info(f"{num_absent} null SNPs are absent from the SNP intervals")

    if isinstance(snps, int):
        mode = RANDOM
        snps = random_loci(pool, snps, draw_rng(seed, RANDOM_SET_STREAM))
        logging.info(f"Testing {len(snps)} random null SNPs")
    else:
        mode = MATCHED

    resolution = resolve_genesets(snps, snp_intervals, index, options.slop)
    merged = merge_loci(resolution.genesets)

    if not merged:
        logging.warning("None of the tested SNPs overlap a gene; every column scores 0")
        all_records = [PValueRecord(condition, 1.0, 0, 0) for condition in matrix.col_names]
        for record in all_records:
            if on_record is not None:
                on_record(record)
    else:
        all_records = _test_loci(matrix, pool, merged, mode, options, seed, on_record)

    return EnrichmentResult(
        records=[r for r in all_records if r.replicate is None],
        null_records=[r for r in all_records if r.replicate is not None],
        snp_genes=snp_genes_report(resolution, merged, snp_intervals, matrix.row_names),
        condition_scores=condition_scores_report(matrix, merged),
        matrix=matrix,
        resolution=resolution,
        merged=merged,
        mode=mode,
        seed=seed,
        missing_genes=missing_genes,
    )


def run_snpsea(snps: str,
               gene_matrix: PathLike,
               gene_intervals: PathLike,
               snp_intervals: PathLike,
               null_snps: PathLike,
               out: PathLike,
               condition: Optional[PathLike] = None,
               options: Optional[EnrichmentOptions] = None,
               ) -> EnrichmentResult:
    """Read the input files, run the enrichment test and write the results to out.

    Args:
        snps: file of SNP names to test, or 'randomN' to test N random null SNPs
        gene_matrix: GCT file
        gene_intervals: BED file of gene intervals named like the matrix rows
        snp_intervals: BED file of SNP intervals
        null_snps: file of SNP names to sample null SNP sets from
        out: output directory, created if needed
        condition: optional file of column names to condition on
        options: run configuration

    Returns:
        EnrichmentResult
    """
    options = options or EnrichmentOptions()
    if options.seed is None:
        options = replace(options, seed=int(np.random.SeedSequence().entropy))
    os.makedirs(out, exist_ok=True)

    write_args(
        os.path.join(out, ARGS),
        options,
        {
            'snps': str(snps),
            'gene-matrix': str(gene_matrix),
            'gene-intervals': str(gene_intervals),
            'snp-intervals': str(snp_intervals),
            'null-snps': str(null_snps),
            'out': str(out),
            'condition': None if condition is None else str(condition),
        },
        options.seed,
    )

    if os.path.exists(str(snps)):
        test_snps: Union[Set[str], int] = read_names(snps)
    else:
        num_random = parse_random_count(str(snps))
        if num_random is None:
            raise FileNotFoundError(f"SNP file not found: {snps}")
        test_snps = num_random

    condition_names = read_names(condition) if condition is not None else None
    values, row_names, col_names = read_gct(gene_matrix)
    missing = missing_conditions(condition_names or [], col_names)
    if missing:
        raise ConfigurationError(f"Conditions not found in the gene matrix: {', '.join(missing)}")

    pvalues_path = os.path.join(out, CONDITION_PVALUES)
    null_pvalues_path = os.path.join(out, NULL_PVALUES)
    write_pvalues(pvalues_path, [])
    if options.null_replicates > 0:
        write_pvalues(null_pvalues_path, [], replicates=True)

    def write_record(record: PValueRecord) -> None:
        if record.replicate is None:
            write_pvalues(pvalues_path, [record], append=True)
        else:
            write_pvalues(null_pvalues_path, [record], append=True, replicates=True)

    result = run_enrichment(
        test_snps,
        values,
        row_names,
        col_names,
        read_gene_intervals(gene_intervals),
        read_bed_intervals(snp_intervals),
        read_names(null_snps),
        condition_names=condition_names,
        options=options,
        on_record=write_record,
    )

    write_snp_genes(os.path.join(out, SNP_GENES), result.snp_genes)
    write_condition_scores(os.path.join(out, SNP_CONDITION_SCORES), result.condition_scores)
    return result
