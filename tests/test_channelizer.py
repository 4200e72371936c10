"""Tests for the channelize entry point on the CPU backends."""

import numpy as np
import pytest
from conftest import direct_channelize, random_bank

from polychan import (
    Channelizer,
    ChannelizerConfig,
    UnsupportedKernelError,
    channelize,
    set_config,
)
from polychan.kernels import TILE_SIZES

DTYPES = [np.float32, np.complex64, np.float64, np.complex128]


def _tolerance(dtype):
    if np.dtype(dtype) in (np.dtype(np.float32), np.dtype(np.complex64)):
        return {"rtol": 1e-4, "atol": 1e-5}
    return {"rtol": 1e-10, "atol": 1e-12}


@pytest.fixture(params=["numba", "numpy", "jax"])
def cpu_backend(request):
    if request.param == "jax":
        pytest.importorskip("jax")
    return request.param


def _tol_for(backend, dtype):
    # JAX runs in single precision unless x64 is enabled
    if backend == "jax":
        return {"rtol": 1e-4, "atol": 1e-4}
    return _tolerance(dtype)


# ============================================================================
# PROPERTIES
# ============================================================================


class TestProperties:
    def test_two_channel_regression(self, cpu_backend):
        x = np.array([[1, 2], [3, 4]], dtype=np.float32)
        h = np.array([[1, 0], [0, 1]], dtype=np.float32)

        y = channelize(x, h, n_pts=2, backend=cpu_backend)

        assert y.dtype == np.complex64
        np.testing.assert_array_equal(y, np.array([[2, 0], [4, 1]], dtype=np.complex64))

    @pytest.mark.parametrize("dtype", DTYPES)
    def test_matches_direct_sum(self, cpu_backend, rng, dtype):
        x, h = random_bank(rng, n_pts=40, n_taps=7, n_chans=11, dtype=dtype)
        y = channelize(x, h, tile_size=8, backend=cpu_backend)

        assert y.dtype == Channelizer(h).output_dtype
        np.testing.assert_allclose(
            y, direct_channelize(x, h), **_tol_for(cpu_backend, dtype)
        )

    @pytest.mark.parametrize("dtype", DTYPES)
    def test_tile_size_invariance(self, rng, dtype):
        x, h = random_bank(rng, n_pts=33, n_taps=8, n_chans=45, dtype=dtype)
        outputs = [channelize(x, h, tile_size=m, backend="numba") for m in TILE_SIZES]
        for y in outputs[1:]:
            np.testing.assert_allclose(y, outputs[0], **_tolerance(dtype))

    @pytest.mark.parametrize("dtype", DTYPES)
    def test_single_tap_is_elementwise_product(self, cpu_backend, rng, dtype):
        x, h = random_bank(rng, n_pts=9, n_taps=1, n_chans=6, dtype=dtype)
        y = channelize(x, h, backend=cpu_backend)
        expected = np.conj(h[0]) * np.conj(x[:, ::-1])
        np.testing.assert_allclose(y, expected, **_tol_for(cpu_backend, dtype))

    def test_zero_filter_gives_zero(self, cpu_backend, rng):
        x, _ = random_bank(rng, n_pts=16, n_taps=4, n_chans=10, dtype=np.complex64)
        h = np.zeros((4, 10), dtype=np.complex64)
        y = channelize(x, h, tile_size=16, backend=cpu_backend)
        assert not np.any(y)

    @pytest.mark.parametrize("n_taps", [2, 5, 8])
    def test_ramp_up_uses_available_history(self, cpu_backend, rng, n_taps):
        x, h = random_bank(rng, n_pts=12, n_taps=n_taps, n_chans=9, dtype=np.complex128)
        y = channelize(x, h, tile_size=8, backend=cpu_backend)
        expected = direct_channelize(x, h)
        head = n_taps - 1
        np.testing.assert_allclose(
            y[:head], expected[:head], **_tol_for(cpu_backend, np.complex128)
        )
        # The first output only sees x[0].
        np.testing.assert_allclose(
            y[0],
            np.conj(h[0]) * np.conj(x[0, ::-1]),
            **_tol_for(cpu_backend, np.complex128),
        )

    def test_channel_mirroring(self, cpu_backend, rng):
        x, h = random_bank(rng, n_pts=20, n_taps=4, n_chans=13, dtype=np.complex64)
        y = channelize(x, h, backend=cpu_backend)
        y_swapped = channelize(
            np.ascontiguousarray(x[:, ::-1]),
            np.ascontiguousarray(h[:, ::-1]),
            backend=cpu_backend,
        )
        np.testing.assert_allclose(
            y_swapped, y[:, ::-1], **_tol_for(cpu_backend, np.complex64)
        )

    def test_repeated_calls_are_bit_identical(self, cpu_backend, rng):
        x, h = random_bank(rng, n_pts=50, n_taps=16, n_chans=20, dtype=np.float32)
        channelizer = Channelizer(h, tile_size=16, backend=cpu_backend)
        first = channelizer(x)
        second = channelizer(x)
        np.testing.assert_array_equal(first, second)


# ============================================================================
# NUMBA TILING
# ============================================================================


class TestNumbaTiling:
    @pytest.mark.parametrize("n_chans", [1, 7, 8, 9, 31, 33])
    def test_channel_counts_not_divisible_by_tile(self, rng, n_chans):
        x, h = random_bank(rng, n_pts=10, n_taps=3, n_chans=n_chans, dtype=np.complex64)
        for m in TILE_SIZES:
            y = channelize(x, h, tile_size=m, backend="numba")
            np.testing.assert_allclose(y, direct_channelize(x, h), rtol=1e-4, atol=1e-5)

    @pytest.mark.parametrize("sample_blocks", [1, 3, 64, 1000])
    def test_sample_blocks_do_not_change_result(self, rng, sample_blocks):
        x, h = random_bank(rng, n_pts=25, n_taps=5, n_chans=12, dtype=np.float64)
        y = channelize(x, h, tile_size=8, backend="numba", sample_blocks=sample_blocks)
        np.testing.assert_allclose(y, direct_channelize(x, h), rtol=1e-10, atol=1e-12)

    def test_n_taps_equal_to_tile(self, rng):
        x, h = random_bank(rng, n_pts=20, n_taps=8, n_chans=8, dtype=np.float32)
        y = channelize(x, h, tile_size=8, backend="numba")
        np.testing.assert_allclose(y, direct_channelize(x, h), rtol=1e-4, atol=1e-5)

    def test_zero_taps(self):
        x = np.ones((5, 4), dtype=np.float64)
        h = np.zeros((0, 4), dtype=np.float64)
        y = channelize(x, h, backend="numba")
        assert y.shape == (5, 4)
        assert not np.any(y)


# ============================================================================
# CALL SURFACE
# ============================================================================


class TestCallSurface:
    def test_n_pts_limits_output(self, rng):
        x, h = random_bank(rng, n_pts=30, n_taps=4, n_chans=5, dtype=np.float32)
        y = channelize(x, h, n_pts=12, backend="numba")
        assert y.shape == (12, 5)
        np.testing.assert_allclose(y, direct_channelize(x, h)[:12], rtol=1e-4, atol=1e-5)

    def test_empty_outputs(self):
        h = np.ones((2, 3), dtype=np.float32)
        assert channelize(np.ones((4, 3), np.float32), h, n_pts=0).shape == (0, 3)

        h = np.ones((2, 0), dtype=np.complex64)
        y = channelize(np.ones((4, 0), np.complex64), h)
        assert y.shape == (4, 0)
        assert y.dtype == np.complex64

    def test_out_buffer_is_filled(self, rng):
        x, h = random_bank(rng, n_pts=10, n_taps=3, n_chans=4, dtype=np.complex128)
        out = np.full((10, 4), np.nan, dtype=np.complex128)
        y = channelize(x, h, backend="numba", out=out)
        assert y is out
        np.testing.assert_allclose(out, direct_channelize(x, h), rtol=1e-10)

    def test_out_buffer_validation(self):
        x = np.ones((4, 3), dtype=np.float32)
        h = np.ones((2, 3), dtype=np.float32)
        with pytest.raises(ValueError, match="shape"):
            channelize(x, h, out=np.empty((3, 3), dtype=np.complex64))
        with pytest.raises(ValueError, match="dtype"):
            channelize(x, h, out=np.empty((4, 3), dtype=np.complex128))

    def test_reused_channelizer(self, rng):
        x1, h = random_bank(rng, n_pts=10, n_taps=3, n_chans=4, dtype=np.float64)
        x2, _ = random_bank(rng, n_pts=15, n_taps=3, n_chans=4, dtype=np.float64)
        channelizer = Channelizer(h, tile_size=16, backend="numba")
        assert channelizer.n_taps == 3
        assert channelizer.n_chans == 4
        assert channelizer.tile_size == 16
        np.testing.assert_allclose(channelizer(x1), direct_channelize(x1, h), rtol=1e-10)
        np.testing.assert_allclose(channelizer(x2), direct_channelize(x2, h), rtol=1e-10)


class TestValidation:
    def test_too_many_taps_for_tile(self):
        h = np.ones((9, 4), dtype=np.float32)
        with pytest.raises(ValueError, match="exceeds the tile size"):
            Channelizer(h, tile_size=8)
        assert Channelizer(h, tile_size=16).n_taps == 9

    def test_unsupported_dtype(self):
        with pytest.raises(UnsupportedKernelError):
            Channelizer(np.ones((2, 4), dtype=np.int32))

    def test_dtype_mismatch(self):
        h = np.ones((2, 4), dtype=np.float32)
        with pytest.raises(UnsupportedKernelError, match="does not match"):
            channelize(np.ones((3, 4), dtype=np.float64), h)

    def test_unsupported_tile(self):
        with pytest.raises(UnsupportedKernelError):
            Channelizer(np.ones((2, 4), dtype=np.float32), tile_size=64)

    def test_legacy_requires_full_tile(self):
        with pytest.raises(UnsupportedKernelError, match="legacy"):
            Channelizer(np.ones((2, 4), dtype=np.float32), tile_size=16, legacy=True)

    def test_shape_errors(self):
        h = np.ones((2, 4), dtype=np.float32)
        with pytest.raises(ValueError, match="2-D"):
            Channelizer(np.ones(4, dtype=np.float32))
        with pytest.raises(ValueError, match="2-D"):
            channelize(np.ones(4, dtype=np.float32), h)
        with pytest.raises(ValueError, match="channels"):
            channelize(np.ones((3, 5), dtype=np.float32), h)
        with pytest.raises(ValueError, match="n_pts"):
            channelize(np.ones((3, 4), dtype=np.float32), h, n_pts=4)
        with pytest.raises(ValueError, match="n_pts"):
            channelize(np.ones((3, 4), dtype=np.float32), h, n_pts=-1)

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown backend"):
            Channelizer(np.ones((2, 4), dtype=np.float32), backend="opencl")

    @pytest.mark.parametrize("sample_blocks", [-5, 0, 65536, 70000])
    def test_sample_blocks_out_of_range(self, sample_blocks):
        h = np.ones((2, 4), dtype=np.float32)
        with pytest.raises(ValueError, match="sample_blocks"):
            Channelizer(h, backend="numba", sample_blocks=sample_blocks)
        with pytest.raises(ValueError, match="sample_blocks"):
            channelize(
                np.ones((3, 4), dtype=np.float32),
                h,
                backend="numba",
                sample_blocks=sample_blocks,
            )

    @pytest.mark.parametrize("sample_blocks", [1, 65535])
    def test_sample_blocks_bounds_accepted(self, sample_blocks):
        h = np.ones((2, 4), dtype=np.float32)
        assert Channelizer(h, sample_blocks=sample_blocks).sample_blocks == sample_blocks


class TestGlobalConfig:
    def test_config_supplies_defaults(self):
        set_config(ChannelizerConfig(tile_size=8, backend="numpy"))
        channelizer = Channelizer(np.ones((3, 4), dtype=np.float32))
        assert channelizer.tile_size == 8
        assert channelizer.backend == "numpy"

    def test_arguments_override_config(self):
        set_config(ChannelizerConfig(tile_size=8, backend="numpy"))
        channelizer = Channelizer(
            np.ones((3, 4), dtype=np.float32), tile_size=32, backend="numba"
        )
        assert channelizer.tile_size == 32
        assert channelizer.backend == "numba"

    def test_config_tile_limits_taps(self):
        set_config(ChannelizerConfig(tile_size=8))
        with pytest.raises(ValueError, match="exceeds the tile size"):
            Channelizer(np.ones((12, 4), dtype=np.float32))
