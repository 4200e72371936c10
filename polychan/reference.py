"""
Reference channelizer implementations.

Direct, non-tiled evaluations of

    y[n, c] = sum_{k=0}^{min(n_taps, n + 1) - 1} conj(h[k, c]) * conj(x[n - k, C - 1 - c])

used to validate the tiled kernels and as the ``numpy`` backend. Both accept
NumPy or CuPy arrays and return an array on the same device.
"""

from typing import Optional

from .backend import ArrayType, dispatch
from .logger import get_logger

logger = get_logger(__name__)


def _output_length(x: ArrayType, n_pts: Optional[int]) -> int:
    return x.shape[0] if n_pts is None else int(n_pts)


def reference_channelize(
    x: ArrayType, h: ArrayType, n_pts: Optional[int] = None
) -> ArrayType:
    """
    Evaluates the channelizer as a sum of shifted products, one tap at a time.

    Args:
        x: Input samples, ``(n_pts_total, n_chans)``.
        h: Filter bank, ``(n_taps, n_chans)``.
        n_pts: Number of output samples. Defaults to ``x.shape[0]``.

    Returns:
        Complex array ``(n_pts, n_chans)``.
    """
    x, xp, _ = dispatch(x)
    h = xp.asarray(h)
    n_taps, n_chans = h.shape
    n_pts = _output_length(x, n_pts)

    out_dtype = xp.result_type(x.dtype, xp.complex64)
    y = xp.zeros((n_pts, n_chans), dtype=out_dtype)
    mirrored = xp.conj(x[:n_pts, ::-1])
    taps = xp.conj(h)

    for k in range(min(n_taps, n_pts)):
        y[k:] += taps[k] * mirrored[: n_pts - k]
    return y


def lfilter_channelize(
    x: ArrayType, h: ArrayType, n_pts: Optional[int] = None
) -> ArrayType:
    """
    Evaluates the channelizer channel by channel with ``signal.lfilter``.

    Each output channel ``c`` is the FIR filter ``conj(h[:, c])`` applied to
    the conjugated input channel ``C - 1 - c`` with zero initial state, which
    is exactly the ramp-up policy of the kernel.

    Args:
        x: Input samples, ``(n_pts_total, n_chans)``.
        h: Filter bank, ``(n_taps, n_chans)``.
        n_pts: Number of output samples. Defaults to ``x.shape[0]``.

    Returns:
        Complex array ``(n_pts, n_chans)``.
    """
    x, xp, sp = dispatch(x)
    h = xp.asarray(h)
    n_taps, n_chans = h.shape
    n_pts = _output_length(x, n_pts)

    out_dtype = xp.result_type(x.dtype, xp.complex64)
    y = xp.zeros((n_pts, n_chans), dtype=out_dtype)
    if n_taps == 0 or n_pts == 0:
        return y

    logger.debug(f"lfilter reference over {n_chans} channels.")
    a = xp.ones(1, dtype=h.dtype)
    for c in range(n_chans):
        b = xp.conj(h[:, c])
        samples = xp.conj(x[:n_pts, n_chans - 1 - c])
        y[:, c] = sp.signal.lfilter(b, a, samples).astype(out_dtype)
    return y
