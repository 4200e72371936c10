"""
Kernel configuration enumeration.

The channelizer kernel exists as a closed set of compiled entry points: one per
(tile size, type pair) combination. This module names that set and resolves a
request (input dtype, tile size, legacy flag) to one member of it, rejecting
anything outside the set before a launch is attempted.

Tile sizes
----------
A tile is a block of ``M x M`` threads. Rows of ``M`` lanes cooperate in the
tap reduction, so ``M`` is also the reduction group width and the maximum
number of taps a single call can cover.

Type pairs
----------
========== =========== =================
input      output      CUDA element type
========== =========== =================
float32    complex64   ``float``
complex64  complex64   ``complex<float>``
float64    complex128  ``double``
complex128 complex128  ``complex<double>``
========== =========== =================
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np

TILE_SIZES = (8, 16, 32)

# The legacy kernels always stage through 32 x 32 shared tiles.
LEGACY_TILE_SIZE = 32

# gridDim.y hardware limit
MAX_SAMPLE_BLOCKS = 65535


class UnsupportedKernelError(ValueError):
    """Raised when no compiled kernel exists for the requested configuration."""


@dataclass(frozen=True)
class TypePair:
    """Input/output element types of one kernel family.

    Attributes
    ----------
    input_dtype : np.dtype
        Element type of ``x`` and ``h``.
    output_dtype : np.dtype
        Complex element type of ``y``.
    c_type : str
        Template argument of the primary CUDA kernel.
    legacy_suffix : str
        Suffix of the legacy CUDA entry point (``r2c``, ``c2c``, ``d2z``, ``z2z``).
    """

    input_dtype: np.dtype
    output_dtype: np.dtype
    c_type: str
    legacy_suffix: str

    @property
    def is_complex(self) -> bool:
        return np.issubdtype(self.input_dtype, np.complexfloating)


TYPE_PAIRS = {
    np.dtype(np.float32): TypePair(
        np.dtype(np.float32), np.dtype(np.complex64), "float", "r2c"
    ),
    np.dtype(np.complex64): TypePair(
        np.dtype(np.complex64), np.dtype(np.complex64), "complex<float>", "c2c"
    ),
    np.dtype(np.float64): TypePair(
        np.dtype(np.float64), np.dtype(np.complex128), "double", "d2z"
    ),
    np.dtype(np.complex128): TypePair(
        np.dtype(np.complex128), np.dtype(np.complex128), "complex<double>", "z2z"
    ),
}


@dataclass(frozen=True)
class KernelConfig:
    """One compiled channelizer entry point."""

    tile_size: int
    type_pair: TypePair
    legacy: bool = False

    @property
    def max_threads(self) -> int:
        """Maximum threads per block declared by the kernel (``M * M``)."""
        return self.tile_size * self.tile_size

    @property
    def block(self) -> Tuple[int, int]:
        return (self.tile_size, self.tile_size)

    @property
    def name_expression(self) -> str:
        """Template instantiation name of the primary kernel."""
        return f"pfb_channelize<{self.type_pair.c_type}, {self.tile_size}>"

    @property
    def legacy_name(self) -> str:
        return f"pfb_channelize_legacy_{self.type_pair.legacy_suffix}"

    @property
    def kernel_name(self) -> str:
        return self.legacy_name if self.legacy else self.name_expression

    def grid(
        self, n_chans: int, n_pts: int, sample_blocks: Optional[int] = None
    ) -> Tuple[int, int]:
        """
        Launch grid for a call.

        ``gridDim.x`` covers the channels in tiles of ``M``; ``gridDim.y`` is
        the number of blocks sharing the strided loop over sample indices.

        Args:
            n_chans: Number of channels.
            n_pts: Number of output samples.
            sample_blocks: Requested ``gridDim.y``. Defaults to one block per
                sample, capped at the hardware limit.

        Returns:
            Tuple ``(gridDim.x, gridDim.y)``.
        """
        gx = -(-n_chans // self.tile_size)
        if sample_blocks is None:
            gy = min(max(n_pts, 1), MAX_SAMPLE_BLOCKS)
        else:
            gy = min(max(int(sample_blocks), 1), MAX_SAMPLE_BLOCKS)
        return gx, gy


def resolve_type_pair(dtype) -> TypePair:
    """
    Returns the type pair for an input dtype.

    Raises:
        UnsupportedKernelError: If no kernel family accepts ``dtype``.
    """
    try:
        return TYPE_PAIRS[np.dtype(dtype)]
    except (KeyError, TypeError):
        supported = ", ".join(str(d) for d in TYPE_PAIRS)
        raise UnsupportedKernelError(
            f"Unsupported element type {dtype}; expected one of: {supported}"
        ) from None


def resolve_kernel(dtype, tile_size: int, legacy: bool = False) -> KernelConfig:
    """
    Resolves a request to one member of the compiled kernel set.

    Args:
        dtype: Element type of ``x`` and ``h``.
        tile_size: Tile size ``M``.
        legacy: Select the non-templated fallback kernels.

    Returns:
        The matching KernelConfig.

    Raises:
        UnsupportedKernelError: For tile sizes outside ``TILE_SIZES``, dtypes
            outside ``TYPE_PAIRS`` or legacy requests with ``M != 32``.
    """
    if tile_size not in TILE_SIZES:
        raise UnsupportedKernelError(
            f"Unsupported tile size {tile_size}; expected one of {TILE_SIZES}"
        )
    if legacy and tile_size != LEGACY_TILE_SIZE:
        raise UnsupportedKernelError(
            f"The legacy kernels only provide a {LEGACY_TILE_SIZE}x{LEGACY_TILE_SIZE} tile, "
            f"got tile size {tile_size}"
        )
    return KernelConfig(int(tile_size), resolve_type_pair(dtype), bool(legacy))


def all_kernel_configs(legacy: bool = False) -> List[KernelConfig]:
    """Enumerates every compiled entry point of the primary or legacy family."""
    sizes = (LEGACY_TILE_SIZE,) if legacy else TILE_SIZES
    return [KernelConfig(m, tp, legacy) for tp in TYPE_PAIRS.values() for m in sizes]
