"""Tests for the reference channelizer implementations."""

import numpy as np
import pytest
from conftest import direct_channelize, random_bank

from polychan.reference import lfilter_channelize, reference_channelize

DTYPES = [np.float32, np.complex64, np.float64, np.complex128]


def _to_np(arr):
    """Convert a NumPy or CuPy array to plain NumPy (no-op for NumPy)."""
    if hasattr(arr, "get"):
        return arr.get()
    return np.asarray(arr)


def test_two_channel_regression():
    x = np.array([[1, 2], [3, 4]], dtype=np.float32)
    h = np.array([[1, 0], [0, 1]], dtype=np.float32)

    for fn in (reference_channelize, lfilter_channelize):
        y = fn(x, h)
        assert y.dtype == np.complex64
        np.testing.assert_array_equal(y, [[2, 0], [4, 1]])


@pytest.mark.parametrize("dtype", DTYPES)
def test_matches_direct_sum(rng, dtype):
    x, h = random_bank(rng, n_pts=20, n_taps=6, n_chans=5, dtype=dtype)
    expected = direct_channelize(x, h)

    np.testing.assert_allclose(reference_channelize(x, h), expected, rtol=1e-4, atol=1e-5)
    np.testing.assert_allclose(lfilter_channelize(x, h), expected, rtol=1e-4, atol=1e-5)


def test_on_device(backend_device, xp, rng):
    x, h = random_bank(rng, n_pts=12, n_taps=4, n_chans=3, dtype=np.complex128)
    y = reference_channelize(xp.asarray(x), xp.asarray(h))
    assert isinstance(y, xp.ndarray)
    np.testing.assert_allclose(_to_np(y), direct_channelize(x, h), rtol=1e-10)


def test_n_pts_shorter_than_input(rng):
    x, h = random_bank(rng, n_pts=10, n_taps=3, n_chans=4, dtype=np.float64)
    y = reference_channelize(x, h, n_pts=6)
    assert y.shape == (6, 4)
    np.testing.assert_allclose(y, direct_channelize(x, h)[:6])


def test_more_taps_than_samples(rng):
    x, h = random_bank(rng, n_pts=3, n_taps=8, n_chans=2, dtype=np.complex64)
    np.testing.assert_allclose(
        reference_channelize(x, h), direct_channelize(x, h), rtol=1e-5, atol=1e-6
    )


def test_zero_taps():
    x = np.ones((4, 3), dtype=np.float32)
    h = np.zeros((0, 3), dtype=np.float32)
    assert not np.any(reference_channelize(x, h))
    assert not np.any(lfilter_channelize(x, h))
