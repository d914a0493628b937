"""
Convert a gene matrix into per-gene, per-condition specificity percentiles.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.stats import rankdata

from .options import ConfigurationError


@dataclass
class SpecificityMatrix:
    """Genes x conditions matrix ready for scoring.

    Attributes:
        values: (num_genes, num_conditions) array. In binary mode, 0/1 indicators;
            otherwise reverse percentiles in (0, 1] where small means specific.
            Rows whose values could not be normalized hold NaN.
        row_names: gene names
        col_names: condition names
        binary: whether values are indicators
        col_sums: number of genes switched on in each column (binary mode)
        col_probs: col_sums divided by the number of genes (binary mode)
    """
    values: np.ndarray
    row_names: List[str]
    col_names: List[str]
    binary: bool = False
    col_sums: Optional[np.ndarray] = field(default=None, repr=False)
    col_probs: Optional[np.ndarray] = field(default=None, repr=False)

    def __post_init__(self):
        if self.values.shape != (len(self.row_names), len(self.col_names)):
            raise ValueError(f"Matrix shape {self.values.shape} does not match "
                             f"{len(self.row_names)} row and {len(self.col_names)} column names")
        self.values.setflags(write=False)

    @property
    def shape(self) -> tuple:
        return self.values.shape

    @property
    def num_rows(self) -> int:
        return self.values.shape[0]

    @property
    def num_cols(self) -> int:
        return self.values.shape[1]

    def column(self, col: int) -> np.ndarray:
        return self.values[:, col]


def is_binary(x: np.ndarray) -> bool:
    """Check if every value is exactly 0 or 1."""
    x = np.asarray(x)
    return bool(np.all((x == 0) | (x == 1)))


def missing_conditions(condition_names: Iterable[str], col_names: Sequence[str]) -> List[str]:
    """Condition names that are not columns of the matrix, sorted."""
    return sorted(set(condition_names) - set(col_names))


def condition_columns(values: np.ndarray, col_names: Sequence[str],
                      condition_names: Iterable[str]) -> Tuple[np.ndarray, List[str]]:
    """Project each condition column out of every column, then drop the condition columns.

    For each condition column b, in sorted order of names, every column a
    (b included) is replaced by a - (a.b / b.b) b.

    Args:
        values: (num_genes, num_columns) array
        col_names: column names
        condition_names: columns to condition on

    Returns:
        Tuple of the conditioned array without condition columns and the remaining column names
    """
    col_names = list(col_names)
    conditions = sorted(set(condition_names))
    missing = missing_conditions(conditions, col_names)
    if missing:
        raise ConfigurationError(f"Conditions not found in the gene matrix: {', '.join(missing)}")

    values = np.array(values, dtype=np.float64)
    indices = []
    for name in conditions:
        col_index = col_names.index(name)
        indices.append(col_index)
        b = values[:, col_index].copy()
        bb = b @ b
        if bb == 0:
            raise ConfigurationError(f"Condition column '{name}' has zero magnitude and cannot be projected out")
        values -= np.outer(b, (values.T @ b) / bb)

    # Delete from the highest index down so the remaining indices stay valid
    for col_index in sorted(indices, reverse=True):
        values = np.delete(values, col_index, axis=1)
        del col_names[col_index]

    return values, col_names


def normalize_rows(values: np.ndarray) -> np.ndarray:
    """Divide each row by its L2 norm. Rows with zero norm become NaN."""
    norms = np.linalg.norm(values, axis=1, keepdims=True)
    with np.errstate(divide='ignore', invalid='ignore'):
        return values / norms


def rankdata_descending(x: np.ndarray) -> np.ndarray:
    """Rank values from largest (rank 1) to smallest, giving ties the mean of their ranks.

    NaN values are not ranked and stay NaN.
    """
    x = np.asarray(x, dtype=np.float64)
    ranks = np.full(x.shape, np.nan)
    finite = ~np.isnan(x)
    if np.any(finite):
        ranks[finite] = rankdata(-x[finite], method='average')
    return ranks


def rank_percentiles(values: np.ndarray) -> np.ndarray:
    """Replace each column by its descending rank divided by the number of rows."""
    num_rows = values.shape[0]
    result = np.empty_like(values, dtype=np.float64)
    for col in range(values.shape[1]):
        result[:, col] = rankdata_descending(values[:, col]) / num_rows
    return result


def build_specificity_matrix(values: np.ndarray,
                             row_names: Sequence[str],
                             col_names: Sequence[str],
                             condition_names: Optional[Iterable[str]] = None,
                             ) -> SpecificityMatrix:
    """Prepare a raw gene matrix for enrichment testing.

    A matrix whose first column holds only 0s and 1s is treated as binary:
    column sums are cached and no other transformation is done. Otherwise the
    matrix is conditioned on condition_names, each row is scaled to unit L2 norm,
    and each column is converted to reverse percentile ranks.

    Args:
        values: (num_genes, num_columns) raw values
        row_names: gene names
        col_names: column names
        condition_names: optional columns to project out and drop

    Returns:
        SpecificityMatrix

    Raises:
        ConfigurationError: if a condition name is not a column
    """
    values = np.asarray(values, dtype=np.float64)
    if values.ndim != 2 or values.shape[0] == 0 or values.shape[1] == 0:
        raise ValueError(f"Gene matrix must be a non-empty 2D array, got shape {values.shape}")
    condition_names = sorted(set(condition_names or []))
    missing = missing_conditions(condition_names, col_names)
    if missing:
        raise ConfigurationError(f"Conditions not found in the gene matrix: {', '.join(missing)}")

    row_names = list(row_names)
    col_names = list(col_names)

    if is_binary(values[:, 0]):
        logging.info("Gene matrix is binary")
        if condition_names:
            logging.warning(f"Ignoring {len(condition_names)} condition columns because the gene matrix is binary")
        col_sums = values.sum(axis=0)
        return SpecificityMatrix(
            values=values.copy(),
            row_names=row_names,
            col_names=col_names,
            binary=True,
            col_sums=col_sums,
            col_probs=col_sums / values.shape[0],
        )

    if condition_names:
        logging.info(f"Conditioning on {len(condition_names)} columns: {', '.join(condition_names)}")
        values, col_names = condition_columns(values, col_names, condition_names)
        if values.shape[1] == 0:
            raise ConfigurationError("No columns remain after removing the condition columns")

    values = normalize_rows(values)
    num_zero_rows = int(np.sum(np.all(np.isnan(values), axis=1)))
    if num_zero_rows:
        logging.warning(f"{num_zero_rows} genes have zero magnitude and will not contribute to scores")

    return SpecificityMatrix(
        values=rank_percentiles(values),
        row_names=row_names,
        col_names=col_names,
        binary=False,
    )
