"""
Adaptive Monte Carlo estimation of enrichment p-values, one per matrix column.
"""
import logging
from dataclasses import dataclass
from multiprocessing import Value
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .genesets import GenesetPool, NullSampler
from .matrix import SpecificityMatrix
from .multiprocessing_template import ParallelProcessor, SerialManager, SharedData, WorkerManager
from .options import EnrichmentOptions
from .scoring import ScoreMethod, geneset_contributions, score, total_scores

INITIAL_ITERATIONS = 100
CHUNK_SIZE = 100

# Streams 1..N belong to null replicates; these keys are far beyond any replicate count
REPLICATE_STREAM = 2**32 - 1
RANDOM_SET_STREAM = 2**32 - 2

_PARAMS = ('col', 'observed_score', 'batch_count', 'batch_index', 'stream')


@dataclass
class PValueRecord:
    """Result of testing one column.

    Attributes:
        condition: column name
        pvalue: (nulls_observed + 1) / (nulls_tested + 1)
        nulls_observed: null SNP sets scoring at least as high as the tested set
        nulls_tested: null SNP sets scored
        replicate: index of the null replicate, or None for the tested SNP set
    """
    condition: str
    pvalue: float
    nulls_observed: int
    nulls_tested: int
    replicate: Optional[int] = None


def iteration_schedule(max_iterations: int, start: int = INITIAL_ITERATIONS) -> List[int]:
    """Batch sizes start, 2*start, 4*start, ... summing to exactly max_iterations.

    The last batch holds whatever remains, so it may be smaller than the one before.
    """
    if max_iterations <= 0 or start <= 0:
        raise ValueError("max_iterations and start must be positive")
    batches = []
    total = 0
    batch = start
    while total < max_iterations:
        batches.append(min(batch, max_iterations - total))
        total += batches[-1]
        batch *= 2
    return batches


def monte_carlo_pvalue(nulls_observed: int, nulls_tested: int) -> float:
    return (nulls_observed + 1) / (nulls_tested + 1)


def draw_rng(seed: int, stream: int, col: int = 0, batch_index: int = 0, chunk: int = 0) -> np.random.Generator:
    """Mersenne Twister generator for one chunk of draws, keyed by its position in the run."""
    return np.random.Generator(
        np.random.MT19937(np.random.SeedSequence([seed, stream, col, batch_index, chunk]))
    )


def replicate_genesets(sampler: NullSampler, seed: int, replicate: int) -> List[np.ndarray]:
    """The SNP set tested in place of the user's SNP set for one null replicate."""
    return sampler.genesets(draw_rng(seed, REPLICATE_STREAM, replicate))


def _pool_contributions(context: Dict[str, Any], col: int) -> np.ndarray:
    # Columns are tested in order, so only the latest one is kept
    if context.get('cached_col') != col:
        pool = context['pool']
        context['cached_contributions'] = geneset_contributions(
            context['method'], context['matrix'], col, pool.genes, pool.offsets)
        context['cached_col'] = col
    return context['cached_contributions']


class EnrichmentTester(ParallelProcessor):
    """Tests every column of the matrix against null SNP sets, in parallel.

    Each batch of null SNP sets is cut into chunks of CHUNK_SIZE draws. Chunk j
    of a batch draws from its own generator, seeded by (seed, stream, column,
    batch, j), and chunks are dealt to workers in turn. Each worker writes its
    count into its own slot and the supervisor adds them up, so p-values depend
    on the seed but not on the number of workers.
    """

    @classmethod
    def prepare_context(cls, matrix: SpecificityMatrix, pool: GenesetPool, sampler: NullSampler,
                        method: ScoreMethod, seed: int, **kwargs) -> Dict[str, Any]:
        return {
            'matrix': matrix,
            'pool': pool,
            'sampler': sampler,
            'method': method,
            'seed': seed,
        }

    @classmethod
    def create_shared_memory(cls, num_workers: int, **kwargs) -> SharedData:
        return SharedData({
            'params': len(_PARAMS),
            'observed': num_workers,
        })

    @classmethod
    def process_task(cls, context: Dict[str, Any],
                     flag: Value,
                     shared_data: SharedData,
                     worker_index: int,
                     num_workers: int,
                     worker_params: Any = None) -> None:
        params = dict(zip(_PARAMS, shared_data['params']))
        col = int(params['col'])
        observed_score = params['observed_score']
        batch_count = int(params['batch_count'])
        batch_index = int(params['batch_index'])
        stream = int(params['stream'])

        contributions = _pool_contributions(context, col)
        num_chunks = -(-batch_count // CHUNK_SIZE)

        count = 0
        for chunk in range(worker_index, num_chunks, num_workers):
            num_draws = min(CHUNK_SIZE, batch_count - chunk * CHUNK_SIZE)
            rng = draw_rng(context['seed'], stream, col, batch_index, chunk)
            draws = context['sampler'].draw(rng, num_draws)
            count += int(np.sum(total_scores(contributions, draws) >= observed_score))

        shared_data['observed', worker_index] = count

    @classmethod
    def test_column(cls,
                    manager: Union[WorkerManager, SerialManager],
                    shared_data: SharedData,
                    observed_score: float,
                    col: int,
                    stream: int,
                    schedule: Sequence[int],
                    min_observations: int) -> Tuple[int, int]:
        """Run batches of null SNP sets for one column until enough beat the observed score.

        Returns:
            Tuple of (nulls_observed, nulls_tested)
        """
        nulls_observed = 0
        nulls_tested = 0
        for batch_index, batch_count in enumerate(schedule):
            shared_data['params'] = np.array(
                [col, observed_score, batch_count, batch_index, stream], dtype=np.float64)
            manager.start_workers()
            manager.await_workers()
            nulls_observed += int(shared_data['observed'].sum())
            nulls_tested += batch_count
            if nulls_observed >= min_observations:
                break
        return nulls_observed, nulls_tested

    @classmethod
    def supervise(cls,
                  manager: Union[WorkerManager, SerialManager],
                  shared_data: SharedData,
                  matrix: SpecificityMatrix,
                  method: ScoreMethod,
                  snp_sets: Sequence[Tuple[Optional[int], Sequence[np.ndarray]]],
                  min_observations: int,
                  max_iterations: int,
                  initial_iterations: int = INITIAL_ITERATIONS,
                  on_record: Optional[Callable[[PValueRecord], None]] = None,
                  **kwargs) -> List[PValueRecord]:
        """Test each SNP set against every column.

        Args:
            manager: worker manager
            shared_data: shared parameters and per-worker counts
            matrix: specificity matrix
            method: scoring method
            snp_sets: (replicate, gene sets) pairs; replicate is None for the tested SNP set
            min_observations: stop a column once this many null sets beat the observed score
            max_iterations: most null sets scored per column
            initial_iterations: size of the first batch
            on_record: called with each record as soon as it is complete

        Returns:
            Records in order of SNP set, then column
        """
        schedule = iteration_schedule(max_iterations, initial_iterations)
        records = []
        for replicate, genesets in snp_sets:
            stream = 0 if replicate is None else replicate + 1
            for col, condition in enumerate(matrix.col_names):
                observed_score = score(method, matrix, col, genesets)
                if observed_score <= 0:
                    nulls_observed, nulls_tested = 0, 0
                else:
                    nulls_observed, nulls_tested = cls.test_column(
                        manager, shared_data, observed_score, col, stream, schedule, min_observations)

                record = PValueRecord(
                    condition=condition,
                    pvalue=monte_carlo_pvalue(nulls_observed, nulls_tested),
                    nulls_observed=nulls_observed,
                    nulls_tested=nulls_tested,
                    replicate=replicate,
                )
                label = condition if replicate is None else f"{condition} (replicate {replicate})"
                logging.info(f"{label}: score {observed_score:.4g}, "
                             f"{nulls_observed}/{nulls_tested} null sets at least as high, p = {record.pvalue:.3g}")
                records.append(record)
                if on_record is not None:
                    on_record(record)
        return records

    @classmethod
    def test(cls,
             matrix: SpecificityMatrix,
             pool: GenesetPool,
             sampler: NullSampler,
             snp_sets: Sequence[Tuple[Optional[int], Sequence[np.ndarray]]],
             options: EnrichmentOptions,
             seed: int,
             on_record: Optional[Callable[[PValueRecord], None]] = None,
             ) -> List[PValueRecord]:
        """Estimate a p-value for every (SNP set, column) pair.

        Args:
            matrix: specificity matrix
            pool: null gene sets
            sampler: draws null SNP sets from pool, in the same mode as snp_sets were built
            snp_sets: (replicate, gene sets) pairs; replicate is None for the tested SNP set
            options: run configuration
            seed: seed for every null draw
            on_record: called with each record as soon as it is complete

        Returns:
            List of PValueRecord
        """
        method = ScoreMethod.select(options.score_method, matrix.binary)
        kwargs = dict(
            matrix=matrix,
            pool=pool,
            sampler=sampler,
            method=method,
            seed=seed,
            snp_sets=snp_sets,
            min_observations=options.min_observations,
            max_iterations=options.max_iterations,
            initial_iterations=options.initial_iterations,
            on_record=on_record,
        )
        if options.run_in_serial:
            return cls.run_serial(num_processes=options.processes, **kwargs)
        return cls.run(num_processes=options.processes, **kwargs)
