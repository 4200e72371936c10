"""
Polychan: a GPU polyphase channelizer.

This package provides:
- A tiled filter-and-reduce CUDA kernel (CuPy) that splits a multi-channel
  stream into per-channel sub-bands, for tile sizes 8, 16 and 32 and
  real/complex single/double precision input.
- A legacy CUDA kernel family without cooperative-groups reductions.
- CPU execution through a Numba emulation of the tiled kernel, JAX, or a
  direct NumPy reference.
- Channel power visualization.
"""

from .channelizer import Channelizer, channelize
from .config import (
    ChannelizerConfig,
    clear_config,
    get_config,
    require_config,
    set_config,
)
from .kernels import TILE_SIZES, TYPE_PAIRS, UnsupportedKernelError
from .logger import set_log_level
from .reference import lfilter_channelize, reference_channelize

__all__ = [
    "Channelizer",
    "channelize",
    "ChannelizerConfig",
    "set_config",
    "get_config",
    "clear_config",
    "require_config",
    "TILE_SIZES",
    "TYPE_PAIRS",
    "UnsupportedKernelError",
    "reference_channelize",
    "lfilter_channelize",
    "set_log_level",
]
