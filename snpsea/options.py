"""
Run configuration for SNPsea.
"""
import re
from dataclasses import dataclass
from multiprocessing import cpu_count
from typing import Optional

SCORE_METHODS = ('single', 'total')

_RANDOM_SNPS = re.compile(r'^random(-?\d+)$')


class ConfigurationError(ValueError):
    """Raised when a run is configured in a way that would produce misleading results."""


@dataclass
class EnrichmentOptions:
    """Stores parameters for the enrichment test.

    Attributes:
        score_method: 'single' scores each locus by its most specific gene,
            'total' by all of its genes
        slop: If a locus overlaps no genes, widen it by this many bases on
            each side and try again
        num_processes: Worker processes; None -> number of processors.
            Never more than the number of processors.
        null_replicates: Number of null SNP sets to test in addition to the
            user's SNP set
        min_observations: Stop testing a column once this many null SNP sets
            score at least as high as the tested set
        max_iterations: Maximum number of null SNP sets tested per column
        initial_iterations: Size of the first batch of null SNP sets; later
            batches double in size
        max_genes: Loci with more genes than this share one sampling bin
        seed: Seed for all random draws; None -> fresh entropy
        run_in_serial: Run workers one after another in this process
    """
    score_method: str = 'single'
    slop: int = 250_000
    num_processes: Optional[int] = None
    null_replicates: int = 10
    min_observations: int = 25
    max_iterations: int = 10_000
    initial_iterations: int = 100
    max_genes: int = 10
    seed: Optional[int] = None
    run_in_serial: bool = False

    def __post_init__(self):
        if self.score_method not in SCORE_METHODS:
            raise ConfigurationError(
                f"Unknown score method '{self.score_method}', expected one of {', '.join(SCORE_METHODS)}")
        if self.max_iterations <= 0:
            raise ConfigurationError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.min_observations <= 0 or self.min_observations >= self.max_iterations:
            raise ConfigurationError(
                f"min_observations must be between 1 and max_iterations - 1, got {self.min_observations}")
        if self.initial_iterations <= 0:
            raise ConfigurationError(f"initial_iterations must be positive, got {self.initial_iterations}")
        if self.slop < 0:
            raise ConfigurationError(f"slop must be non-negative, got {self.slop}")
        if self.null_replicates < 0:
            raise ConfigurationError(f"null_replicates must be non-negative, got {self.null_replicates}")
        if self.max_genes < 1:
            raise ConfigurationError(f"max_genes must be at least 1, got {self.max_genes}")
        if self.num_processes is not None and self.num_processes < 1:
            raise ConfigurationError(f"num_processes must be at least 1, got {self.num_processes}")
        if self.seed is not None and self.seed < 0:
            raise ConfigurationError(f"seed must be non-negative, got {self.seed}")

    @property
    def processes(self) -> int:
        """Number of workers to start."""
        if self.num_processes is None:
            return cpu_count()
        return max(1, min(self.num_processes, cpu_count()))


def parse_random_count(value: str) -> Optional[int]:
    """Parse a test set given as 'randomN'.

    Returns:
        N, or None if value does not start with 'random'

    Raises:
        ConfigurationError: value starts with 'random' but N is not a positive integer
    """
    if not value.startswith('random'):
        return None
    match = _RANDOM_SNPS.match(value)
    if match is None or int(match.group(1)) <= 0:
        raise ConfigurationError(f"Invalid random SNP set '{value}', must be like: random20")
    return int(match.group(1))
