"""
Computational backend management.

This module abstracts the array library (NumPy or CuPy) so the channelizer can
run on CPU and GPU with a stateless, data-driven approach.
It defines helper functions to:
- Infer the active backend module (NumPy or CuPy) from data.
- Manage data transfer between devices.
- Lazily load the optional compilers (Numba, JAX).
"""

import types
from functools import lru_cache
from typing import Any, Optional, Tuple, Union

import numpy as np

from .logger import get_logger

logger = get_logger(__name__)

# Try to import CuPy and verify functionality
try:
    import cupy as cp

    # Allocate and run a trivial operation: CuPy may be installed while the
    # CUDA runtime libraries (nvrtc, driver) are missing.
    try:
        cp.arange(1)
        _CUPY_AVAILABLE = True
        logger.info("CuPy is available and functional, GPU kernels enabled.")
    except Exception:
        _CUPY_AVAILABLE = False
        cp = None
        logger.warning(
            "CuPy has problems with shared libraries, falling back to NumPy."
        )

except ImportError:
    _CUPY_AVAILABLE = False
    cp = None
    logger.debug("CuPy is not available, falling back to NumPy.")

ArrayType = Union[
    np.ndarray, Any
]  # Any for CuPy array to avoid hard dependency in type hint if not installed

# Lazy loading caches
_JAX_CACHE = {}
_NUMBA_CACHE = {}


def _get_jax():
    """Lazy loader for JAX modules to avoid repeated import overhead."""
    if "jax" not in _JAX_CACHE:
        try:
            import jax
            import jax.numpy as jnp
            from jax import dlpack

            _JAX_CACHE["jax"] = jax
            _JAX_CACHE["jnp"] = jnp
            _JAX_CACHE["dlpack"] = dlpack
        except ImportError:
            _JAX_CACHE["jax"] = None

    return _JAX_CACHE.get("jax"), _JAX_CACHE.get("jnp"), _JAX_CACHE.get("dlpack")


def _get_numba():
    """Lazy loader for Numba.

    Returns the ``numba`` module if installed, else ``None``.
    """
    if "numba" not in _NUMBA_CACHE:
        try:
            import numba  # noqa: PLC0415

            _NUMBA_CACHE["numba"] = numba
        except ImportError:
            _NUMBA_CACHE["numba"] = None
    return _NUMBA_CACHE.get("numba")


_FORCE_CPU = False


def use_cpu_only(force: bool = True) -> None:
    """
    Forces the library to use CPU only, pretending CuPy is not available.

    Args:
        force: If True, blocks CuPy availability.
    """
    global _FORCE_CPU
    _FORCE_CPU = force


def is_cupy_available() -> bool:
    """Returns True if CuPy is available and functional, and not forced off."""
    if _FORCE_CPU:
        return False
    return _CUPY_AVAILABLE


def _is_device_array(data: Any) -> bool:
    """Returns True if ``data`` lives in GPU memory, whatever the CPU-only flag."""
    return _CUPY_AVAILABLE and isinstance(data, cp.ndarray)


def is_cupy_array(data: Any) -> bool:
    """
    Returns True if ``data`` is a CuPy ndarray that should be processed on the GPU.

    Always False while ``use_cpu_only(True)`` is in effect, so callers route
    such data to the host.
    """
    return is_cupy_available() and isinstance(data, cp.ndarray)


def get_array_module(data: Any) -> types.ModuleType:
    """
    Returns the array module (numpy or cupy) for the given data.

    Args:
        data: Input data (array or list).

    Returns:
        The numpy module if data is on CPU (or a list), or cupy if on GPU.
    """
    if is_cupy_available():
        return cp.get_array_module(data)
    return np


@lru_cache(maxsize=None)
def get_scipy_module(xp: types.ModuleType) -> types.ModuleType:
    """
    Returns the scipy-compatible library (scipy or cupyx.scipy) for the array module.

    Args:
        xp: The array module (numpy or cupy).

    Returns:
        The corresponding scipy-compatible module.
    """
    if is_cupy_available() and xp == cp:
        import cupyx.scipy
        import cupyx.scipy.signal

        return cupyx.scipy

    import scipy
    import scipy.signal

    return scipy


def to_device(data: Any, device: str) -> ArrayType:
    """
    Moves data to the specified device.

    Args:
        data: Input data.
        device: 'CPU' or 'GPU'.

    Returns:
        Array on the target device.

    Raises:
        ImportError: If the GPU is requested and CuPy is not usable.
        ValueError: If the device name is unknown.
    """
    logger.debug(f"Moving data to {device.upper()}.")
    device = device.lower()
    if device == "cpu":
        return to_host(data)

    elif device == "gpu":
        if not is_cupy_available():
            raise ImportError("CuPy is not available.")
        if isinstance(data, cp.ndarray):
            return data
        return cp.asarray(data)

    else:
        raise ValueError(f"Unknown device: {device.upper()}")


def to_host(data: Any) -> np.ndarray:
    """
    Moves data to the host (CPU/NumPy) for plotting or I/O.

    Args:
        data: Input data.

    Returns:
        NumPy array.
    """
    if _is_device_array(data):
        return data.get()

    if isinstance(data, np.ndarray):
        return data

    return np.asarray(data)


def dispatch(
    data: Any,
) -> Tuple[ArrayType, types.ModuleType, types.ModuleType]:
    """
    Prepare data and return appropriate backend modules (xp, sp).
    Infers backend from the input data.

    Args:
        data: Input data.

    Returns:
        Tuple of (data_array, xp_module, sp_module).
    """
    xp = get_array_module(data)
    sp = get_scipy_module(xp)

    if not isinstance(data, (np.ndarray, getattr(cp, "ndarray", type(None)))):
        data = xp.asarray(data)

    return data, xp, sp


def to_jax(data: Any) -> Any:
    """
    Converts data to a JAX array.

    CuPy arrays are handed over through DLPack so they stay on the GPU;
    NumPy arrays are placed on the default JAX device.

    Args:
        data: Input data (NumPy array, CuPy array, list, etc.).

    Returns:
        JAX array.

    Raises:
        ImportError: If JAX is not installed.
    """
    jax, jnp, jax_dlpack = _get_jax()
    if jax is None:
        raise ImportError("JAX is not installed.")

    if _is_device_array(data):
        try:
            return jax_dlpack.from_dlpack(data)
        except Exception as e:
            logger.debug(
                f"DLPack transfer from CuPy to JAX failed: {e}. Falling back to explicit conversion."
            )
            data = data.get()

    return jnp.asarray(data)


def from_jax(data: Any, like: Optional[Any] = None) -> ArrayType:
    """
    Converts a JAX array back to a NumPy or CuPy array.

    Args:
        data: Input JAX array.
        like: Optional array whose device the result should follow. A CuPy
            ``like`` yields a CuPy result, anything else a NumPy result.

    Returns:
        NumPy or CuPy array.
    """
    if is_cupy_array(like):
        try:
            return cp.from_dlpack(data)
        except Exception as e:
            logger.debug(
                f"DLPack transfer from JAX to CuPy failed: {e}. Falling back to host copy."
            )
            return cp.asarray(np.asarray(data))

    return np.asarray(data)
