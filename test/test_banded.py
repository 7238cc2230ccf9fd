"""
Banded elimination tests: agreement with a dense solve on random band
matrices, the band check, and the singular-pivot signal.
"""

import numpy as np
import pytest

from sketcher.banded import DENSE_COLUMNS, BandedMatrix
from sketcher.errors import SingularMatrixError

pytestmark = [pytest.mark.solver, pytest.mark.fast]


def _random_band(rng, n, left=8, right=8):
    a = np.zeros((n, n))
    for i in range(n):
        lo = max(0, i - left)
        hi = min(n - DENSE_COLUMNS, i + right + 1)
        a[i, lo:hi] = rng.uniform(-1.0, 1.0, hi - lo)
        a[i, n - DENSE_COLUMNS:] = rng.uniform(-1.0, 1.0, DENSE_COLUMNS)
    # Diagonal dominance keeps the pivots away from zero
    a[np.diag_indices(n)] += n
    return a


@pytest.mark.parametrize("seed", range(24))
def test_matches_dense_solve(seed):
    rng = np.random.default_rng(seed)
    n = int(rng.integers(4, 40))
    a = _random_band(rng, n)
    b = rng.uniform(-10.0, 10.0, n)

    band = BandedMatrix(a, b)
    assert band.fits()
    np.testing.assert_allclose(band.solve(), np.linalg.solve(a, b), rtol=1e-9, atol=1e-9)


def test_narrow_band():
    rng = np.random.default_rng(7)
    a = _random_band(rng, 12, left=1, right=2)
    b = rng.uniform(-1.0, 1.0, 12)
    band = BandedMatrix(a, b, left=1, right=2)
    assert band.fits()
    np.testing.assert_allclose(band.solve(), np.linalg.solve(a, b), rtol=1e-9, atol=1e-9)


def test_input_arrays_are_not_modified():
    rng = np.random.default_rng(3)
    a = _random_band(rng, 10)
    b = rng.uniform(-1.0, 1.0, 10)
    a0, b0 = a.copy(), b.copy()
    BandedMatrix(a, b).solve()
    np.testing.assert_array_equal(a, a0)
    np.testing.assert_array_equal(b, b0)


def test_entry_outside_band_does_not_fit():
    a = np.eye(30)
    a[25, 0] = 1.0
    assert not BandedMatrix(a, np.ones(30)).fits()


def test_dense_trailing_columns_fit():
    a = np.eye(30)
    a[0, 28] = a[0, 29] = a[29, 28] = 1.0
    assert BandedMatrix(a, np.ones(30)).fits()


def test_zero_pivot_raises():
    a = np.eye(6)
    a[2, 2] = 0.0
    with pytest.raises(SingularMatrixError) as exc:
        BandedMatrix(a, np.ones(6)).solve()
    assert exc.value.row == 2
