"""
Scores measuring how specific a collection of gene sets is to one column of the matrix.

Each score is a sum of non-negative per-gene-set contributions; a larger score
means stronger enrichment. A total that is not finite counts as 0.
"""
from enum import Enum
from typing import Callable, Dict, Sequence, Tuple

import numpy as np
from scipy.stats import binom, gamma, hypergeom

from .genesets import to_compressed
from .matrix import SpecificityMatrix


class ScoreMethod(Enum):
    BINARY_SINGLE = 'binary_single'
    BINARY_TOTAL = 'binary_total'
    QUANTITATIVE_SINGLE = 'quantitative_single'
    QUANTITATIVE_TOTAL = 'quantitative_total'

    @classmethod
    def select(cls, score_method: str, binary: bool) -> 'ScoreMethod':
        """Choose the score for 'single' or 'total' and the kind of matrix."""
        if score_method not in ('single', 'total'):
            raise ValueError(f"Unknown score method '{score_method}'")
        kind = 'binary' if binary else 'quantitative'
        return cls(f"{kind}_{score_method}")

    @property
    def binary(self) -> bool:
        return self in (ScoreMethod.BINARY_SINGLE, ScoreMethod.BINARY_TOTAL)


def _starts(offsets: np.ndarray) -> np.ndarray:
    starts = offsets[:-1]
    if not np.all(np.diff(offsets) > 0):
        raise ValueError("Gene sets must not be empty")
    return starts


def _binary_single(matrix: SpecificityMatrix, col: int,
                   genes: np.ndarray, offsets: np.ndarray) -> np.ndarray:
    # Chance that a gene set of this size hits at least one gene in the column
    on = (matrix.values[genes, col] > 0).astype(np.int64)
    k = np.add.reduceat(on, _starts(offsets))
    t = np.diff(offsets)
    pmf0 = hypergeom.pmf(0, matrix.num_rows, int(matrix.col_sums[col]), t)
    return np.where(k > 0, -np.log(1.0 - pmf0), 0.0)


def _binary_total(matrix: SpecificityMatrix, col: int,
                  genes: np.ndarray, offsets: np.ndarray) -> np.ndarray:
    # Upper tail: P(X >= k) for the number of genes in the set that are in the column
    on = (matrix.values[genes, col] > 0).astype(np.int64)
    k = np.add.reduceat(on, _starts(offsets))
    t = np.diff(offsets)
    upper = hypergeom.sf(k - 1, matrix.num_rows, int(matrix.col_sums[col]), t)
    return np.where(k > 0, -np.log(upper), 0.0)


def _quantitative_single(matrix: SpecificityMatrix, col: int,
                         genes: np.ndarray, offsets: np.ndarray) -> np.ndarray:
    # fmin skips genes with undefined specificity
    percentile = np.fmin.reduceat(matrix.values[genes, col], _starts(offsets))
    t = np.diff(offsets)
    return np.where(percentile < 1.0, -np.log(1.0 - (1.0 - percentile) ** t), 0.0)


def _quantitative_total(matrix: SpecificityMatrix, col: int,
                        genes: np.ndarray, offsets: np.ndarray) -> np.ndarray:
    logs = -np.log(matrix.values[genes, col])
    logs[np.isnan(logs)] = 0.0
    total = np.add.reduceat(logs, _starts(offsets))
    t = np.diff(offsets)
    return -np.log(gamma.sf(total, a=t, scale=1.0))


_CONTRIBUTIONS: Dict[ScoreMethod, Callable] = {
    ScoreMethod.BINARY_SINGLE: _binary_single,
    ScoreMethod.BINARY_TOTAL: _binary_total,
    ScoreMethod.QUANTITATIVE_SINGLE: _quantitative_single,
    ScoreMethod.QUANTITATIVE_TOTAL: _quantitative_total,
}


def geneset_contributions(method: ScoreMethod,
                          matrix: SpecificityMatrix,
                          col: int,
                          genes: np.ndarray,
                          offsets: np.ndarray) -> np.ndarray:
    """Contribution of each gene set to the score of one column.

    Args:
        method: scoring method, must agree with matrix.binary
        matrix: specificity matrix
        col: column index
        genes: concatenated gene row indices of all gene sets
        offsets: gene set i is genes[offsets[i]:offsets[i + 1]]; sets must be non-empty

    Returns:
        Array with one contribution per gene set; entries may be inf or nan
    """
    if method.binary != matrix.binary:
        raise ValueError(f"Score method {method.value} cannot be used with this matrix")
    if len(offsets) < 2:
        return np.zeros(0)
    with np.errstate(divide='ignore', invalid='ignore', over='ignore'):
        return _CONTRIBUTIONS[method](matrix, col, genes, offsets)


def total_scores(contributions: np.ndarray, draws: np.ndarray) -> np.ndarray:
    """Sum contributions over each row of draws, replacing totals that are not finite with 0.

    Each row is summed in ascending order so that the same gene sets give the
    same total whatever order they were drawn in.

    Args:
        contributions: per-gene-set contributions
        draws: (num_draws, num_loci) indices into contributions

    Returns:
        Array of num_draws scores
    """
    with np.errstate(invalid='ignore', over='ignore'):
        totals = np.sort(contributions[draws], axis=1).sum(axis=1)
    return np.where(np.isfinite(totals), totals, 0.0)


def score(method: ScoreMethod,
          matrix: SpecificityMatrix,
          col: int,
          genesets: Sequence[Sequence[int]]) -> float:
    """Score a collection of gene sets against one column. Empty gene sets contribute nothing."""
    genesets = [g for g in genesets if len(g) > 0]
    if not genesets:
        return 0.0
    genes, offsets = to_compressed(genesets)
    contributions = geneset_contributions(method, matrix, col, genes, offsets)
    return float(total_scores(contributions, np.arange(len(genesets)).reshape(1, -1))[0])


def best_gene_scores(matrix: SpecificityMatrix,
                     geneset: Sequence[int]) -> Tuple[np.ndarray, np.ndarray]:
    """For one gene set, the most specific gene and its score in every column.

    For a quantitative matrix the score is 1 - (1 - p)^t for the smallest
    percentile p in the set of t genes, or 1 if no gene is below 1. For a
    binary matrix no single gene is chosen and the score is the binomial
    probability of the number of genes in the set that are in the column.

    Returns:
        Tuple of best gene row index per column (-1 for none) and score per column
    """
    geneset = np.asarray(geneset, dtype=np.int64)
    num_cols = matrix.num_cols
    best = np.full(num_cols, -1, dtype=np.int64)

    if matrix.binary:
        k = (matrix.values[geneset, :] > 0).sum(axis=0)
        scores = binom.pmf(k, matrix.col_sums.astype(np.int64), matrix.col_probs)
        return best, scores

    scores = np.ones(num_cols)
    t = len(geneset)
    for col in range(num_cols):
        percentile = 1.0
        for gene in geneset:
            value = matrix.values[gene, col]
            if value < percentile:
                percentile = value
                best[col] = gene
        if percentile < 1.0:
            scores[col] = 1.0 - (1.0 - percentile) ** t
    return best, scores
