"""Command line interface for SNPsea."""

import logging
import os
import sys
import time
from typing import Optional

import click

from .options import ConfigurationError, EnrichmentOptions, parse_random_count
from .snpsea import LOG, run_snpsea


def _setup_logging(out_dir: Optional[str], verbose: bool):
    """Set up logging configuration."""
    log_format = '%(asctime)s %(levelname)s %(module)s - %(funcName)s: %(message)s'
    date_format = '%Y-%m-%d %H:%M:%S'

    handlers = []
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(out_dir, LOG), mode='w'))
    if verbose:
        handlers.append(logging.StreamHandler(sys.stdout))
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        level=logging.INFO,
        format=log_format,
        datefmt=date_format,
        handlers=handlers,
        force=True,
    )


def _check_snps(ctx, param, value: str) -> str:
    """Accept an existing file or 'randomN'."""
    if os.path.exists(value):
        return value
    try:
        num_random = parse_random_count(value)
    except ConfigurationError as e:
        raise click.BadParameter(str(e))
    if num_random is None:
        raise click.BadParameter(f"'{value}' is neither a file nor like 'random20'")
    return value


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option('--snps', required=True, callback=_check_snps,
              help="File of SNP names to test, or 'randomN' to test N random SNPs from --null-snps.")
@click.option('--gene-matrix', required=True, type=click.Path(exists=True, dir_okay=False),
              help="GCT file with genes in rows and conditions in columns.")
@click.option('--gene-intervals', required=True, type=click.Path(exists=True, dir_okay=False),
              help="BED file with gene intervals named like the rows of --gene-matrix.")
@click.option('--snp-intervals', required=True, type=click.Path(exists=True, dir_okay=False),
              help="BED file with an interval for each SNP.")
@click.option('--null-snps', required=True, type=click.Path(exists=True, dir_okay=False),
              help="File of SNP names to sample null SNP sets from.")
@click.option('--out', required=True, type=click.Path(file_okay=False),
              help="Output directory, created if needed.")
@click.option('--condition', default=None, type=click.Path(exists=True, dir_okay=False),
              help="File of column names to condition on and remove from --gene-matrix.")
@click.option('--score', 'score_method', type=click.Choice(['single', 'total']), default='single',
              show_default=True, help="Score each locus by its most specific gene or by all of its genes.")
@click.option('--slop', type=float, default=250e3, show_default=True,
              help="If a SNP overlaps no genes, widen its interval by this many bases on each side.")
@click.option('-p', '--processes', type=int, default=None,
              help="Number of worker processes. Defaults to all processors.")
@click.option('--null-snpsets', type=int, default=10, show_default=True,
              help="Number of null SNP sets to test in addition to --snps.")
@click.option('--min-observations', type=int, default=25, show_default=True,
              help="Stop testing a condition once this many null SNP sets score at least as high.")
@click.option('--max-iterations', type=float, default=1e4, show_default=True,
              help="Maximum number of null SNP sets tested per condition.")
@click.option('--seed', type=int, default=None, help="Seed for all random draws.")
@click.option('--serial', 'run_in_serial', is_flag=True,
              help="Run in a single process, for debugging.")
@click.option('-v', '--verbose', is_flag=True, help="Print log messages to the console.")
def main(snps, gene_matrix, gene_intervals, snp_intervals, null_snps, out, condition,
         score_method, slop, processes, null_snpsets, min_observations, max_iterations,
         seed, run_in_serial, verbose):
    """Test whether SNPs are enriched for genes specific to each condition of a gene matrix."""
    _setup_logging(out, verbose)
    start_time = time.time()

    if slop != int(slop) or max_iterations != int(max_iterations):
        raise click.BadParameter("--slop and --max-iterations must be whole numbers")

    try:
        options = EnrichmentOptions(
            score_method=score_method,
            slop=int(slop),
            num_processes=processes,
            null_replicates=null_snpsets,
            min_observations=min_observations,
            max_iterations=int(max_iterations),
            seed=seed,
            run_in_serial=run_in_serial,
        )
        result = run_snpsea(
            snps=snps,
            gene_matrix=gene_matrix,
            gene_intervals=gene_intervals,
            snp_intervals=snp_intervals,
            null_snps=null_snps,
            out=out,
            condition=condition,
            options=options,
        )
    except ConfigurationError as e:
        logging.error(str(e))
        raise click.ClickException(str(e))

    logging.info(f"Tested {len(result.merged)} loci against {result.matrix.num_cols} conditions "
                 f"in {time.time() - start_time:.2f}s")
    if verbose:
        for record in result.records:
            click.echo(f"{record.condition}\t{record.pvalue:.3g}")


if __name__ == '__main__':
    main()
