"""End-to-end tests for running SNPsea."""

import os

import numpy as np
import polars as pl
import pytest

from snpsea.genesets import MATCHED, RANDOM
from snpsea.intervals import GenomicInterval
from snpsea.montecarlo import PValueRecord
from snpsea.options import ConfigurationError, EnrichmentOptions
from snpsea.snpsea import (
    ARGS,
    CONDITION_PVALUES,
    NULL_PVALUES,
    SNP_CONDITION_SCORES,
    SNP_GENES,
    align_genes,
    run_enrichment,
    run_snpsea,
)


@pytest.fixture
def options():
    return EnrichmentOptions(
        slop=0,
        null_replicates=2,
        min_observations=5,
        max_iterations=300,
        seed=42,
        run_in_serial=True,
        num_processes=1,
    )


def _run(dataset, options, snps=None, **kwargs):
    return run_enrichment(
        dataset['snps'] if snps is None else snps,
        dataset['values'],
        dataset['row_names'],
        dataset['col_names'],
        dataset['gene_intervals'],
        dataset['snp_intervals'],
        dataset['null_snps'],
        options=options,
        **kwargs,
    )


def test_align_genes():
    values = np.arange(6, dtype=float).reshape(3, 2)
    gene_intervals = [('a', GenomicInterval('chr1', 1, 2)), ('c', GenomicInterval('chr1', 5, 6))]
    aligned, row_names, removed = align_genes(values, ['a', 'b', 'c'], gene_intervals)
    assert row_names == ['a', 'c']
    assert removed == ['b']
    assert aligned.tolist() == [[0.0, 1.0], [4.0, 5.0]]


def test_align_genes_none_left():
    with pytest.raises(ValueError):
        align_genes(np.ones((1, 2)), ['a'], [('b', GenomicInterval('chr1', 1, 2))])


def test_run_enrichment(dataset, options):
    result = _run(dataset, options)

    assert result.mode == MATCHED
    assert result.seed == 42
    assert list(result.merged) == ['rs10', 'rs21,rs_pair20', 'rs3']
    assert len(result.records) == len(dataset['col_names'])
    assert len(result.null_records) == 2 * len(dataset['col_names'])
    for record in result.records + result.null_records:
        assert 0 < record.pvalue <= 1
        assert record.nulls_tested <= 300
        assert record.pvalue == (record.nulls_observed + 1) / (record.nulls_tested + 1)


def test_run_enrichment_reports(dataset, options):
    result = _run(dataset, options)

    snp_genes = result.snp_genes
    assert snp_genes.columns == ['chrom', 'start', 'end', 'snp', 'n_genes', 'genes']
    rows = {row['snp']: row for row in snp_genes.iter_rows(named=True)}
    assert rows['rs_missing']['chrom'] is None
    assert rows['rs_far']['n_genes'] == 0
    assert rows['rs3']['genes'] == 'gene3'
    merged = rows['rs21,rs_pair20']
    assert merged['n_genes'] == 2
    assert merged['genes'] == 'gene20,gene21'
    assert merged['start'] == 20_400
    assert merged['end'] == 21_100

    scores = result.condition_scores
    assert scores.columns == ['snp', 'condition', 'gene', 'score']
    assert scores.height == len(result.merged) * len(dataset['col_names'])
    # A gene with percentile 1 is never the best gene
    assert set(scores.filter(pl.col('snp') == 'rs3')['gene'].to_list()) <= {'gene3', None}


def test_run_enrichment_reproducible(dataset, options):
    assert _run(dataset, options).records == _run(dataset, options).records


def test_run_enrichment_random(dataset, options):
    result = _run(dataset, options, snps=5)
    assert result.mode == RANDOM
    assert len(result.resolution.genesets) == 5
    assert not result.resolution.absent
    assert not result.resolution.naked
    assert len(result.records) == len(dataset['col_names'])


def test_run_enrichment_no_loci(dataset, options):
    seen = []
    result = _run(dataset, options, snps={'rs_far', 'rs_missing'}, on_record=seen.append)

    assert result.records == [PValueRecord(c, 1.0, 0, 0) for c in dataset['col_names']]
    assert seen == result.records
    assert result.null_records == []
    assert result.merged == {}
    assert result.condition_scores.height == 0
    assert set(result.snp_genes['snp'].to_list()) == {'rs_far', 'rs_missing'}


def test_run_snpsea_no_loci(snpsea_files, dataset, options, tmp_path):
    snps = tmp_path / 'far.txt'
    snps.write_text("rs_far\n")
    snpsea_files['snps'] = str(snps)
    run_snpsea(**snpsea_files, options=options)
    out = snpsea_files['out']

    pvalues = pl.read_csv(os.path.join(out, CONDITION_PVALUES), separator='\t')
    assert pvalues['condition'].to_list() == dataset['col_names']
    assert pvalues['pvalue'].to_list() == [1.0] * len(dataset['col_names'])
    assert pvalues['nulls_tested'].to_list() == [0] * len(dataset['col_names'])
    assert os.path.exists(os.path.join(out, SNP_GENES))
    assert os.path.exists(os.path.join(out, SNP_CONDITION_SCORES))


def test_run_enrichment_missing_condition(dataset, options):
    with pytest.raises(ConfigurationError):
        _run(dataset, options, condition_names=['not_a_column'])


def test_run_enrichment_condition(dataset, options):
    result = _run(dataset, options, condition_names=['cond0'])
    assert result.matrix.col_names == ['cond1', 'cond2']
    assert [r.condition for r in result.records] == ['cond1', 'cond2']


def test_run_enrichment_removes_genes_without_intervals(dataset, options):
    gene_intervals = [item for item in dataset['gene_intervals'] if item[0] != 'gene39']
    result = run_enrichment(
        dataset['snps'], dataset['values'], dataset['row_names'], dataset['col_names'],
        gene_intervals, dataset['snp_intervals'], dataset['null_snps'], options=options,
    )
    assert result.missing_genes == ['gene39']
    assert result.matrix.num_rows == len(dataset['row_names']) - 1


def test_run_snpsea(snpsea_files, dataset, options):
    result = run_snpsea(**snpsea_files, options=options)
    out = snpsea_files['out']

    for name in (ARGS, CONDITION_PVALUES, NULL_PVALUES, SNP_GENES, SNP_CONDITION_SCORES):
        assert os.path.exists(os.path.join(out, name))
    assert not [name for name in os.listdir(out) if name.endswith('.lock')]

    pvalues = pl.read_csv(os.path.join(out, CONDITION_PVALUES), separator='\t')
    assert pvalues['condition'].to_list() == dataset['col_names']
    assert pvalues['pvalue'].to_list() == [r.pvalue for r in result.records]

    null_pvalues = pl.read_csv(os.path.join(out, NULL_PVALUES), separator='\t')
    assert null_pvalues.height == 2 * len(dataset['col_names'])
    assert sorted(set(null_pvalues['replicate'].to_list())) == [0, 1]

    snp_genes = pl.read_csv(os.path.join(out, SNP_GENES), separator='\t', null_values='NA')
    assert set(snp_genes['snp'].to_list()) == {'rs_missing', 'rs_far', 'rs3', 'rs10', 'rs21,rs_pair20'}


def test_run_snpsea_random(snpsea_files, options):
    snpsea_files['snps'] = 'random4'
    result = run_snpsea(**snpsea_files, options=options)
    assert result.mode == RANDOM
    assert len(result.resolution.genesets) == 4


def test_run_snpsea_bad_snps(snpsea_files, options):
    snpsea_files['snps'] = 'not_a_file.txt'
    with pytest.raises(FileNotFoundError):
        run_snpsea(**snpsea_files, options=options)
