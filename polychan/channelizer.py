"""
Polyphase channelizer entry points.

This module is the caller side of the channelizer kernels: it validates shapes
and element types, resolves the kernel configuration from the closed set in
``polychan.kernels``, allocates the output and dispatches to one backend.

Backends
--------
cuda :
    CuPy kernels (primary templated family, or the legacy family with
    ``legacy=True``). NumPy inputs are copied to the GPU and the result copied
    back.
numba :
    Numba emulation of the tiled kernel on the CPU.
jax :
    ``jax.jit`` closed form, tile size is ignored.
numpy :
    Direct reference evaluation (works on NumPy and CuPy arrays).

Unless ``backend`` is given, CuPy inputs run on ``cuda`` and everything else on
``numba``. The result is returned on the device of ``x``.

Functions
---------
channelize :
    One-shot channelization of ``x`` with filter bank ``h``.

Classes
-------
Channelizer :
    Filter bank bound to a resolved kernel, reusable across inputs.
"""

from typing import Optional

import numpy as np

from . import cpu, cuda
from .backend import (
    ArrayType,
    dispatch,
    from_jax,
    is_cupy_array,
    to_device,
    to_host,
    to_jax,
)
from .config import BACKENDS, get_config
from .kernels import MAX_SAMPLE_BLOCKS, UnsupportedKernelError, resolve_kernel
from .logger import get_logger
from .reference import reference_channelize

logger = get_logger(__name__)

_DEFAULTS = {"tile_size": 32, "backend": None, "legacy": False, "sample_blocks": None}


def _launch_settings(**overrides) -> dict:
    """Merges explicit arguments over the global config over the defaults."""
    config = get_config()
    settings = dict(config.launch_params()) if config is not None else dict(_DEFAULTS)
    for key, value in overrides.items():
        if value is not None:
            settings[key] = value
    return settings


class Channelizer:
    """
    A polyphase filter bank bound to one channelizer kernel.

    The filter bank ``h`` has one column per channel and one row per tap.
    Applying the channelizer to ``x`` computes, for each output sample ``n``
    and channel ``c``::

        y[n, c] = sum_k conj(h[k, c]) * conj(x[n - k, n_chans - 1 - c])

    where samples before ``x[0]`` count as zero and ``conj`` is the identity
    for real element types.

    Args:
        h: Filter bank, ``(n_taps, n_chans)``, float32/float64/complex64/complex128.
        tile_size: Tile size ``M`` (8, 16 or 32). ``n_taps`` must not exceed it.
        backend: One of ``'cuda'``, ``'numba'``, ``'jax'``, ``'numpy'``.
            ``None`` selects from the device of each input.
        legacy: Use the legacy CUDA kernels (tile size 32 only).
        sample_blocks: Number of blocks sharing the loop over sample indices.

    Raises:
        ValueError: If ``h`` is not 2-D, the backend is unknown,
            ``n_taps > tile_size`` or ``sample_blocks`` is outside ``[1, 65535]``.
        UnsupportedKernelError: If no kernel exists for the dtype/tile size.
    """

    def __init__(
        self,
        h: ArrayType,
        tile_size: Optional[int] = None,
        backend: Optional[str] = None,
        legacy: Optional[bool] = None,
        sample_blocks: Optional[int] = None,
    ):
        settings = _launch_settings(
            tile_size=tile_size,
            backend=backend,
            legacy=legacy,
            sample_blocks=sample_blocks,
        )

        h, _, _ = dispatch(h)
        if h.ndim != 2:
            raise ValueError(f"h must be 2-D (n_taps, n_chans), got shape {h.shape}")

        backend = settings["backend"]
        if backend is not None:
            backend = backend.lower()
            if backend not in BACKENDS:
                raise ValueError(
                    f"Unknown backend {backend!r}; expected one of {BACKENDS}"
                )

        self.kernel = resolve_kernel(h.dtype, settings["tile_size"], settings["legacy"])
        self.n_taps, self.n_chans = (int(s) for s in h.shape)
        if self.n_taps > self.kernel.tile_size:
            raise ValueError(
                f"n_taps={self.n_taps} exceeds the tile size {self.kernel.tile_size}; "
                "one tile reduction must cover every tap"
            )

        sample_blocks = settings["sample_blocks"]
        if sample_blocks is not None:
            sample_blocks = int(sample_blocks)
            if not 1 <= sample_blocks <= MAX_SAMPLE_BLOCKS:
                raise ValueError(
                    f"sample_blocks must be within [1, {MAX_SAMPLE_BLOCKS}], "
                    f"got {sample_blocks}"
                )

        self.h = h
        self.backend = backend
        self.sample_blocks = sample_blocks
        self._h_gpu = None

        logger.debug(
            f"Channelizer: n_taps={self.n_taps}, n_chans={self.n_chans}, "
            f"kernel={self.kernel.kernel_name}, backend={self.backend or 'auto'}"
        )

    @property
    def tile_size(self) -> int:
        return self.kernel.tile_size

    @property
    def output_dtype(self) -> np.dtype:
        return self.kernel.type_pair.output_dtype

    def __call__(
        self,
        x: ArrayType,
        n_pts: Optional[int] = None,
        out: Optional[ArrayType] = None,
    ) -> ArrayType:
        """
        Channelizes ``x``.

        Args:
            x: Input samples, ``(n_pts_total, n_chans)``, same dtype as ``h``.
            n_pts: Number of output samples, ``0 <= n_pts <= n_pts_total``.
                Defaults to ``n_pts_total``.
            out: Optional output buffer ``(n_pts, n_chans)`` of the output
                dtype, on the device of ``x``.

        Returns:
            Complex array ``(n_pts, n_chans)`` on the device of ``x``. With
            ``use_cpu_only(True)`` a CuPy ``x`` is copied to the host, routed
            to a CPU backend and the result stays on the host.

        Raises:
            ValueError: On shape mismatches or an invalid ``out`` buffer.
            UnsupportedKernelError: If ``x`` and ``h`` dtypes differ.
            ImportError: If the selected backend library is unavailable.
        """
        x, xp, _ = dispatch(x)
        if not is_cupy_array(x):
            # no-op for NumPy; copies CuPy input while CPU-only is forced
            x = to_host(x)
        n_pts = self._check_input(x, n_pts)
        self._check_output(out, n_pts)

        backend = self.backend or ("cuda" if is_cupy_array(x) else "numba")
        if n_pts == 0 or self.n_chans == 0:
            y = xp.zeros((n_pts, self.n_chans), dtype=self.output_dtype)
            return self._deliver(y, x, out)

        logger.debug(f"Channelizing {n_pts} samples on backend '{backend}'.")
        if backend == "cuda":
            y = self._run_cuda(x, n_pts, out)
        elif backend == "numba":
            y = self._run_numba(x, n_pts)
        elif backend == "jax":
            y = self._run_jax(x, n_pts)
        else:
            y = reference_channelize(x, xp.asarray(to_host(self.h)), n_pts)
        return self._deliver(y, x, out)

    # ------------------------------------------------------------------
    # validation
    # ------------------------------------------------------------------

    def _check_input(self, x: ArrayType, n_pts: Optional[int]) -> int:
        if x.ndim != 2:
            raise ValueError(f"x must be 2-D (n_pts, n_chans), got shape {x.shape}")
        if x.shape[1] != self.n_chans:
            raise ValueError(
                f"x has {x.shape[1]} channels but the filter bank has {self.n_chans}"
            )
        if x.dtype != self.h.dtype:
            raise UnsupportedKernelError(
                f"x dtype {x.dtype} does not match filter bank dtype {self.h.dtype}"
            )
        if n_pts is None:
            return int(x.shape[0])
        n_pts = int(n_pts)
        if not 0 <= n_pts <= x.shape[0]:
            raise ValueError(
                f"n_pts must be within [0, {x.shape[0]}], got {n_pts}"
            )
        return n_pts

    def _check_output(self, out: Optional[ArrayType], n_pts: int) -> None:
        if out is None:
            return
        if tuple(out.shape) != (n_pts, self.n_chans):
            raise ValueError(
                f"out must have shape {(n_pts, self.n_chans)}, got {tuple(out.shape)}"
            )
        if out.dtype != self.output_dtype:
            raise ValueError(
                f"out must have dtype {self.output_dtype}, got {out.dtype}"
            )

    # ------------------------------------------------------------------
    # backends
    # ------------------------------------------------------------------

    def _run_cuda(self, x: ArrayType, n_pts: int, out: Optional[ArrayType]) -> ArrayType:
        import cupy as cp  # noqa: PLC0415

        if self._h_gpu is None:
            self._h_gpu = cp.ascontiguousarray(to_device(self.h, "gpu"))
        x_gpu = cp.ascontiguousarray(to_device(x, "gpu"))

        if is_cupy_array(out) and out.flags.c_contiguous:
            y = out
        else:
            y = cp.empty((n_pts, self.n_chans), dtype=self.output_dtype)

        cuda.launch(
            self.kernel,
            x_gpu,
            self._h_gpu,
            y,
            self.n_chans,
            self.n_taps,
            n_pts,
            self.sample_blocks,
        )
        return y

    def _run_numba(self, x: ArrayType, n_pts: int) -> np.ndarray:
        x_host = np.ascontiguousarray(to_host(x))
        h_host = np.ascontiguousarray(to_host(self.h))
        y = np.empty((n_pts, self.n_chans), dtype=self.output_dtype)

        if self.sample_blocks is None:
            blocks = cpu.default_numba_blocks()
        else:
            blocks = self.kernel.grid(self.n_chans, n_pts, self.sample_blocks)[1]

        return cpu.channelize_numba(
            x_host,
            h_host,
            y,
            self.n_chans,
            self.n_taps,
            n_pts,
            self.tile_size,
            blocks,
        )

    def _run_jax(self, x: ArrayType, n_pts: int) -> ArrayType:
        y = cpu.channelize_jax(to_jax(x), to_jax(self.h), n_pts)
        return from_jax(y, like=x).astype(self.output_dtype, copy=False)

    @staticmethod
    def _deliver(y: ArrayType, x: ArrayType, out: Optional[ArrayType]) -> ArrayType:
        """Places ``y`` on the device of ``x`` and into ``out`` when given."""
        if is_cupy_array(x):
            y = to_device(y, "gpu")
        else:
            y = to_host(y)

        if out is None or out is y:
            return y
        if is_cupy_array(out):
            out[...] = to_device(y, "gpu")
        else:
            out[...] = to_host(y)
        return out


def channelize(
    x: ArrayType,
    h: ArrayType,
    n_pts: Optional[int] = None,
    tile_size: Optional[int] = None,
    backend: Optional[str] = None,
    legacy: Optional[bool] = None,
    sample_blocks: Optional[int] = None,
    out: Optional[ArrayType] = None,
) -> ArrayType:
    """
    Decomposes a multi-channel stream into per-channel sub-bands.

    Each channel's samples are filtered by its polyphase branch of ``h`` and
    the taps are summed with a tile reduction. See ``Channelizer`` for the
    exact formula and argument details.

    Args:
        x: Input samples, ``(n_pts_total, n_chans)``.
        h: Filter bank, ``(n_taps, n_chans)``, same dtype as ``x``.
        n_pts: Number of output samples. Defaults to ``x.shape[0]``.
        tile_size: Tile size ``M`` (8, 16 or 32).
        backend: ``'cuda'``, ``'numba'``, ``'jax'``, ``'numpy'`` or ``None``.
        legacy: Use the legacy CUDA kernels.
        sample_blocks: Number of blocks sharing the loop over sample indices.
        out: Optional output buffer.

    Returns:
        Complex array ``(n_pts, n_chans)`` on the device of ``x``.

    Examples:
        >>> x = np.array([[1, 2], [3, 4]], dtype=np.float32)
        >>> h = np.array([[1, 0], [0, 1]], dtype=np.float32)
        >>> channelize(x, h, backend="numpy").real
        array([[2., 0.],
               [4., 1.]], dtype=float32)
    """
    channelizer = Channelizer(
        h,
        tile_size=tile_size,
        backend=backend,
        legacy=legacy,
        sample_blocks=sample_blocks,
    )
    return channelizer(x, n_pts=n_pts, out=out)
