"""
CPU channelizer backends.

* **Numba**: ``@njit`` emulation of the CUDA kernel. Every (channel tile,
  sample block) pair is one ``prange`` iteration with private ``M x M``
  scratch tiles, the same tap/window staging and the same pairwise
  shuffle-down reduction order as the GPU tile. Results therefore depend on
  ``M`` only through floating-point summation order.
* **JAX**: ``jax.jit`` of the closed form
  ``y[n, c] = sum_k conj(h[k, c]) * conj(x[n - k, C - 1 - c])``, vectorised
  over samples and channels. Tile size plays no role here.
"""

import functools

import numpy as np

from .backend import _get_jax, _get_numba
from .logger import get_logger

logger = get_logger(__name__)

# ============================================================================
# NUMBA TILED KERNEL
# ============================================================================
#
# Calling convention:
#   • x      : (n_pts_total, n_chans), C-contiguous, input dtype
#   • h      : (n_taps, n_chans),      C-contiguous, input dtype
#   • y      : (n_pts, n_chans), complex output dtype, filled in place
#   • tile   : M, one of 8 / 16 / 32
#   • blocks : number of sample blocks (gridDim.y of the GPU launch)
#
# np.conj() on a real scalar is the identity, so one compiled body serves the
# real and complex type pairs; Numba specialises it per argument dtype.

_NUMBA_KERNELS: dict = {}


def _get_numba_channelize():
    """JIT-compile and cache the Numba tiled channelizer kernel.

    Returns
    -------
    channelize_tiles : numba-compiled callable
        See the calling convention above.
    """
    if "channelize" not in _NUMBA_KERNELS:
        numba_mod = _get_numba()
        if numba_mod is None:
            raise ImportError("Numba is required for backend='numba'.")

        @numba_mod.njit(nogil=True, parallel=True)
        def channelize_tiles(x, h, y, n_chans, n_taps, n_pts, tile, blocks):
            n_tiles = (n_chans + tile - 1) // tile
            for group in numba_mod.prange(n_tiles * blocks):
                base = (group // blocks) * tile
                first = group % blocks

                s_h = np.zeros((tile, tile), dtype=x.dtype)
                s_reg = np.zeros((tile, tile), dtype=x.dtype)
                lanes = np.zeros(tile, dtype=y.dtype)

                # taps: s_h[channel, tap]
                for ty in range(tile):
                    for tx in range(tile):
                        if base + tx < n_chans and ty < n_taps:
                            s_h[tx, ty] = np.conj(h[ty, base + tx])

                for bid in range(first, n_pts, blocks):
                    # window: s_reg[channel, tap], newest sample at tap 0
                    for ty in range(tile):
                        for tx in range(tile):
                            btx = base + tx
                            mirrored = n_chans - 1 - btx
                            slot = ty
                            row = -1
                            if bid >= n_taps - 1:
                                if ty < n_taps:
                                    slot = (n_taps - 1) - ty
                                    row = bid - n_taps + 1 + ty
                            elif ty <= bid:
                                slot = bid - ty
                                row = ty
                            s_reg[tx, slot] = 0
                            if row >= 0 and btx < n_chans:
                                s_reg[tx, slot] = np.conj(x[row, mirrored])

                    # reduce: row ty is one channel, lanes tx span the taps
                    for ty in range(tile):
                        if base + ty >= n_chans:
                            break
                        for tx in range(tile):
                            lanes[tx] = s_h[ty, tx] * s_reg[ty, tx]
                        offset = tile // 2
                        while offset > 0:
                            for lane in range(offset):
                                lanes[lane] += lanes[lane + offset]
                            offset //= 2
                        y[bid, base + ty] = lanes[0]

        _NUMBA_KERNELS["channelize"] = channelize_tiles
    return _NUMBA_KERNELS["channelize"]


def default_numba_blocks() -> int:
    """Number of sample blocks that keeps every Numba worker thread busy."""
    numba_mod = _get_numba()
    if numba_mod is None:
        raise ImportError("Numba is required for backend='numba'.")
    return max(1, numba_mod.get_num_threads())


def channelize_numba(
    x: np.ndarray,
    h: np.ndarray,
    y: np.ndarray,
    n_chans: int,
    n_taps: int,
    n_pts: int,
    tile_size: int,
    sample_blocks: int,
) -> np.ndarray:
    """
    Runs the tiled channelizer on the CPU.

    Args:
        x: Input samples, ``(n_pts_total, n_chans)``, C-contiguous.
        h: Filter bank, ``(n_taps, n_chans)``, C-contiguous, same dtype as ``x``.
        y: Output buffer, ``(n_pts, n_chans)``, complex dtype.
        n_chans: Number of channels.
        n_taps: Taps per channel (``<= tile_size``).
        n_pts: Number of output samples.
        tile_size: Tile size ``M``.
        sample_blocks: Number of blocks sharing the sample loop.

    Returns:
        ``y``, filled in place.
    """
    kernel = _get_numba_channelize()
    logger.debug(
        f"Numba channelizer: tile={tile_size}, sample_blocks={sample_blocks}, "
        f"n_chans={n_chans}, n_taps={n_taps}, n_pts={n_pts}"
    )
    kernel(x, h, y, n_chans, n_taps, n_pts, tile_size, sample_blocks)
    return y


# ============================================================================
# JAX
# ============================================================================

_JAX_KERNELS: dict = {}


def _get_jitted_channelize():
    """Builds and caches the jitted closed-form channelizer."""
    if "channelize" not in _JAX_KERNELS:
        jax, jnp, _ = _get_jax()
        if jax is None:
            raise ImportError("JAX is required for backend='jax'.")

        @functools.partial(jax.jit, static_argnums=(2,))
        def channelize_fn(x, h, n_pts):
            n_taps, n_chans = h.shape
            out_dtype = jnp.result_type(x.dtype, jnp.complex64)
            mirrored = jnp.conj(x[:n_pts, ::-1])
            taps = jnp.conj(h)
            history = max(n_taps - 1, 0)
            padded = jnp.pad(mirrored, ((history, 0), (0, 0)))
            acc = jnp.zeros((n_pts, n_chans), dtype=out_dtype)
            # Static unroll over taps; n_taps <= 32 by construction.
            for k in range(n_taps):
                start = history - k
                acc = acc + taps[k] * padded[start : start + n_pts]
            return acc

        _JAX_KERNELS["channelize"] = channelize_fn
    return _JAX_KERNELS["channelize"]


def channelize_jax(x, h, n_pts: int):
    """
    Runs the closed-form channelizer under ``jax.jit``.

    Args:
        x: JAX array of input samples, ``(n_pts_total, n_chans)``.
        h: JAX array filter bank, ``(n_taps, n_chans)``.
        n_pts: Number of output samples (static for tracing).

    Returns:
        JAX array ``(n_pts, n_chans)``.
    """
    fn = _get_jitted_channelize()
    logger.debug(f"JAX channelizer: n_taps={h.shape[0]}, n_pts={n_pts}")
    return fn(x, h, int(n_pts))
