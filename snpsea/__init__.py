"""SNPsea: enrichment of SNP loci for condition-specific genes."""

from snpsea.genesets import GenesetPool, NullSampler, merge_loci, random_loci, resolve_genesets
from snpsea.intervals import GenomicInterval, IntervalIndex, IntervalTree
from snpsea.io import read_bed_intervals, read_gct, read_gene_intervals, read_names, write_pvalues
from snpsea.matrix import SpecificityMatrix, build_specificity_matrix
from snpsea.montecarlo import EnrichmentTester, PValueRecord, iteration_schedule, monte_carlo_pvalue
from snpsea.multiprocessing_template import ParallelProcessor, SharedData, WorkerManager
from snpsea.options import ConfigurationError, EnrichmentOptions
from snpsea.scoring import ScoreMethod, score
from snpsea.snpsea import EnrichmentResult, run_enrichment, run_snpsea

__all__ = [
    'run_snpsea',
    'run_enrichment',
    'EnrichmentResult',
    'EnrichmentOptions',
    'ConfigurationError',
    'GenomicInterval',
    'IntervalTree',
    'IntervalIndex',
    'SpecificityMatrix',
    'build_specificity_matrix',
    'resolve_genesets',
    'merge_loci',
    'random_loci',
    'GenesetPool',
    'NullSampler',
    'ScoreMethod',
    'score',
    'EnrichmentTester',
    'PValueRecord',
    'iteration_schedule',
    'monte_carlo_pvalue',
    'SharedData',
    'ParallelProcessor',
    'WorkerManager',
    'read_bed_intervals',
    'read_gene_intervals',
    'read_gct',
    'read_names',
    'write_pvalues',
]
