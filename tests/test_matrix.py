"""Tests for building the specificity matrix."""

import numpy as np
import pytest

from snpsea.matrix import (
    SpecificityMatrix,
    build_specificity_matrix,
    condition_columns,
    is_binary,
    normalize_rows,
    rank_percentiles,
    rankdata_descending,
)
from snpsea.options import ConfigurationError


def test_rankdata_descending():
    assert np.array_equal(rankdata_descending(np.array([3.0, 1.0, 2.0])), [1.0, 3.0, 2.0])


def test_rankdata_descending_ties():
    assert np.array_equal(rankdata_descending(np.array([1.0, 1.0, 0.0])), [1.5, 1.5, 3.0])


def test_rankdata_descending_nan():
    ranks = rankdata_descending(np.array([0.5, np.nan, 0.9]))
    assert ranks[0] == 2.0
    assert np.isnan(ranks[1])
    assert ranks[2] == 1.0


def test_rank_percentiles_range():
    rng = np.random.default_rng(1)
    percentiles = rank_percentiles(rng.random((25, 4)))
    assert np.all(percentiles > 0)
    assert np.all(percentiles <= 1)
    # Each column is a permutation of 1/R, 2/R, ..., 1
    for col in range(4):
        assert np.allclose(np.sort(percentiles[:, col]), np.arange(1, 26) / 25)


def test_is_binary():
    assert is_binary(np.array([0, 1, 1, 0]))
    assert not is_binary(np.array([0, 1, 0.5]))
    assert not is_binary(np.array([0, 2]))


def test_normalize_rows_zero_row():
    normalized = normalize_rows(np.array([[3.0, 4.0], [0.0, 0.0]]))
    assert np.allclose(normalized[0], [0.6, 0.8])
    assert np.all(np.isnan(normalized[1]))


def test_small_matrix_percentiles(small_matrix):
    expected = np.array([[2 / 3, 2 / 3], [1.0, 1 / 3], [1 / 3, 1.0]])
    assert not small_matrix.binary
    assert np.allclose(small_matrix.values, expected)


def test_matrix_is_read_only(small_matrix):
    with pytest.raises(ValueError):
        small_matrix.values[0, 0] = 0.5


def test_condition_columns_orthogonal():
    rng = np.random.default_rng(3)
    values = rng.random((30, 3))
    b = values[:, 1].copy()
    conditioned, names = condition_columns(values, ['a', 'b', 'c'], ['b'])
    assert names == ['a', 'c']
    assert conditioned.shape == (30, 2)
    assert np.allclose(conditioned.T @ b, 0.0)


def test_condition_columns_drops_in_any_order():
    values = np.eye(4) + 1.0
    conditioned, names = condition_columns(values, ['w', 'x', 'y', 'z'], ['z', 'x'])
    assert names == ['w', 'y']
    assert conditioned.shape == (4, 2)


def test_missing_condition_is_reported():
    with pytest.raises(ConfigurationError, match="nope, other"):
        build_specificity_matrix(np.ones((2, 2)) * 0.5, ['r0', 'r1'], ['a', 'b'], ['nope', 'other'])


def test_zero_condition_column():
    values = np.array([[0.5, 0.0, 1.0], [0.2, 0.0, 2.0]])
    with pytest.raises(ConfigurationError):
        condition_columns(values, ['a', 'b', 'c'], ['b'])


def test_build_with_condition():
    rng = np.random.default_rng(4)
    matrix = build_specificity_matrix(rng.random((10, 3)) + 0.1, [f"r{i}" for i in range(10)],
                                      ['a', 'b', 'c'], ['a'])
    assert matrix.col_names == ['b', 'c']
    assert matrix.shape == (10, 2)


def test_binary_detection():
    values = np.array([[1, 0, 1], [0, 0, 1], [1, 1, 0], [0, 1, 0]], dtype=float)
    matrix = build_specificity_matrix(values, ['r0', 'r1', 'r2', 'r3'], ['a', 'b', 'c'])
    assert matrix.binary
    # No projection, normalization or ranking
    assert np.array_equal(matrix.values, values)
    assert np.array_equal(matrix.col_sums, [2, 2, 2])
    assert np.allclose(matrix.col_probs, [0.5, 0.5, 0.5])


def test_binary_ignores_conditions():
    values = np.array([[1, 0], [0, 1]], dtype=float)
    matrix = build_specificity_matrix(values, ['r0', 'r1'], ['a', 'b'], ['a'])
    assert matrix.binary
    assert matrix.col_names == ['a', 'b']


def test_zero_row_has_nan_percentiles():
    values = np.array([[1.0, 0.5], [0.0, 0.0], [0.3, 0.9]])
    matrix = build_specificity_matrix(values, ['r0', 'r1', 'r2'], ['a', 'b'])
    assert np.all(np.isnan(matrix.values[1]))
    assert not np.any(np.isnan(matrix.values[[0, 2]]))


def test_shape_must_match_names():
    with pytest.raises(ValueError, match="does not match"):
        SpecificityMatrix(values=np.zeros((2, 2)), row_names=['a', 'b', 'c'], col_names=['x', 'y'])
