"""
CUDA channelizer kernels (CuPy).

Two kernel families implement the same filter-and-reduce contract:

* **Primary**: one C++ template ``pfb_channelize<T, M>`` instantiated for every
  (element type, tile size) pair through ``RawModule(name_expressions=...)``.
  Complex arithmetic uses CuPy's ``complex<T>`` template and the tap sum is a
  ``cooperative_groups::reduce`` over a ``thread_block_tile<M>``.
* **Legacy**: plain ``extern "C"`` kernels rendered once per type pair from a
  Mako template, for toolchains without cooperative-groups reductions. They
  work on ``float2``/``double2`` fields directly, reduce with a manual
  ``__shfl_down_sync`` ladder and always stage through 32 x 32 shared tiles.

Kernel layout
-------------
A block of ``M x M`` threads owns channels ``[blockIdx.x * M, blockIdx.x * M + M)``
and visits sample indices ``blockIdx.y, blockIdx.y + gridDim.y, ...``.

* The tap tile ``s_h[channel][tap]`` is loaded once per block, conjugated for
  complex types.
* For every sample index the window tile ``s_reg[channel][tap]`` receives the
  ``n_taps`` most recent samples of the channel-mirrored input, newest at tap 0,
  conjugated for complex types. Taps reaching before the first sample are zero.
* After a barrier, row ``ty`` of the block multiplies ``s_h[ty][:]`` by
  ``s_reg[ty][:]`` and reduces across its ``M`` lanes; lane 0 writes the result.
"""

from collections import namedtuple

import numpy as np
from mako.template import Template

from .backend import is_cupy_available
from .kernels import KernelConfig, all_kernel_configs
from .logger import get_logger

logger = get_logger(__name__)

PRIMARY_SOURCE = r"""
#include <cooperative_groups.h>
#include <cooperative_groups/reduce.h>
#include <cupy/complex.cuh>

namespace cg = cooperative_groups;

template <typename T>
struct pfb_traits;

template <>
struct pfb_traits<float> {
    typedef float real_type;
    __device__ static float zero() { return 0.0f; }
    __device__ static float conjugate(const float v) { return v; }
    __device__ static complex<float> widen(const float v) { return complex<float>(v, 0.0f); }
};

template <>
struct pfb_traits<double> {
    typedef double real_type;
    __device__ static double zero() { return 0.0; }
    __device__ static double conjugate(const double v) { return v; }
    __device__ static complex<double> widen(const double v) { return complex<double>(v, 0.0); }
};

template <>
struct pfb_traits<complex<float> > {
    typedef float real_type;
    __device__ static complex<float> zero() { return complex<float>(0.0f, 0.0f); }
    __device__ static complex<float> conjugate(const complex<float>& v) {
        return complex<float>(v.real(), -v.imag());
    }
    __device__ static complex<float> widen(const complex<float>& v) { return v; }
};

template <>
struct pfb_traits<complex<double> > {
    typedef double real_type;
    __device__ static complex<double> zero() { return complex<double>(0.0, 0.0); }
    __device__ static complex<double> conjugate(const complex<double>& v) {
        return complex<double>(v.real(), -v.imag());
    }
    __device__ static complex<double> widen(const complex<double>& v) { return v; }
};

template <typename T, int M>
__global__ void __launch_bounds__(M * M)
pfb_channelize(const int n_chans, const int n_taps, const int n_pts,
               const T* __restrict__ x, const T* __restrict__ h,
               complex<typename pfb_traits<T>::real_type>* __restrict__ y)
{
    typedef pfb_traits<T> traits;
    typedef typename traits::real_type R;

    // complex<T> is not trivially constructible, so the tiles are raw storage
    __shared__ __align__(16) unsigned char s_h_raw[M * M * sizeof(T)];
    __shared__ __align__(16) unsigned char s_reg_raw[M * M * sizeof(T)];
    T (*s_h)[M] = reinterpret_cast<T (*)[M]>(s_h_raw);
    T (*s_reg)[M] = reinterpret_cast<T (*)[M]>(s_reg_raw);

    cg::thread_block block = cg::this_thread_block();
    cg::thread_block_tile<M> tile = cg::tiled_partition<M>(block);

    const int tx = threadIdx.x;
    const int ty = threadIdx.y;
    const int base = blockIdx.x * M;
    const int btx = base + tx;
    const bool chan_valid = btx < n_chans;
    const int mirrored = n_chans - 1 - btx;

    s_h[tx][ty] = (chan_valid && ty < n_taps)
        ? traits::conjugate(h[ty * n_chans + btx])
        : traits::zero();

    for (int bid = blockIdx.y; bid < n_pts; bid += gridDim.y) {
        T v = traits::zero();
        int slot = ty;
        if (bid >= n_taps - 1) {
            if (ty < n_taps) {
                slot = (n_taps - 1) - ty;
                if (chan_valid) {
                    v = traits::conjugate(x[(bid - n_taps + 1 + ty) * n_chans + mirrored]);
                }
            }
        } else if (ty <= bid) {
            // ramp-up: only samples [0, bid] exist
            slot = bid - ty;
            if (chan_valid) {
                v = traits::conjugate(x[ty * n_chans + mirrored]);
            }
        }
        s_reg[tx][slot] = v;
        block.sync();

        if (base + ty < n_chans) {
            const complex<R> p = traits::widen(s_h[ty][tx] * s_reg[ty][tx]);
            const R re = cg::reduce(tile, p.real(), cg::plus<R>());
            const R im = cg::reduce(tile, p.imag(), cg::plus<R>());
            if (tile.thread_rank() == 0) {
                y[bid * n_chans + base + ty] = complex<R>(re, im);
            }
        }
        block.sync();
    }
}
"""

LEGACY_SOURCE = Template(
    r"""
#define LEGACY_M ${tile}
#define FULL_MASK 0xffffffff

__device__ __forceinline__ float legacy_conj(const float v) { return v; }
__device__ __forceinline__ double legacy_conj(const double v) { return v; }
__device__ __forceinline__ float2 legacy_conj(const float2 v) { return make_float2(v.x, -v.y); }
__device__ __forceinline__ double2 legacy_conj(const double2 v) { return make_double2(v.x, -v.y); }

__device__ __forceinline__ float2 legacy_mul(const float a, const float b)
{
    return make_float2(a * b, 0.0f);
}

__device__ __forceinline__ double2 legacy_mul(const double a, const double b)
{
    return make_double2(a * b, 0.0);
}

__device__ __forceinline__ float2 legacy_mul(const float2 a, const float2 b)
{
    return make_float2(a.x * b.x - a.y * b.y, a.x * b.y + a.y * b.x);
}

__device__ __forceinline__ double2 legacy_mul(const double2 a, const double2 b)
{
    return make_double2(a.x * b.x - a.y * b.y, a.x * b.y + a.y * b.x);
}

__device__ __forceinline__ float legacy_warp_sum(float v)
{
    for (int offset = LEGACY_M / 2; offset > 0; offset /= 2) {
        v += __shfl_down_sync(FULL_MASK, v, offset);
    }
    return v;
}

__device__ __forceinline__ double legacy_warp_sum(double v)
{
    for (int offset = LEGACY_M / 2; offset > 0; offset /= 2) {
        v += __shfl_down_sync(FULL_MASK, v, offset);
    }
    return v;
}

% for k in variants:
extern "C" __global__ void __launch_bounds__(LEGACY_M * LEGACY_M)
pfb_channelize_legacy_${k.suffix}(const int n_chans, const int n_taps, const int n_pts,
                                  const ${k.tin}* __restrict__ x,
                                  const ${k.tin}* __restrict__ h,
                                  ${k.tout}* __restrict__ y)
{
    __shared__ ${k.tin} s_h[LEGACY_M][LEGACY_M];
    __shared__ ${k.tin} s_reg[LEGACY_M][LEGACY_M];

    const int tx = threadIdx.x;
    const int ty = threadIdx.y;
    const int base = blockIdx.x * LEGACY_M;
    const int btx = base + tx;
    const bool chan_valid = btx < n_chans;
    const int mirrored = n_chans - 1 - btx;

    s_h[tx][ty] = ${k.zero};
    if (chan_valid && ty < n_taps) {
        s_h[tx][ty] = legacy_conj(h[ty * n_chans + btx]);
    }

    for (int bid = blockIdx.y; bid < n_pts; bid += gridDim.y) {
        ${k.tin} v = ${k.zero};
        int slot = ty;
        if (bid >= n_taps - 1) {
            if (ty < n_taps) {
                slot = (n_taps - 1) - ty;
                if (chan_valid) {
                    v = legacy_conj(x[(bid - n_taps + 1 + ty) * n_chans + mirrored]);
                }
            }
        } else if (ty <= bid) {
            slot = bid - ty;
            if (chan_valid) {
                v = legacy_conj(x[ty * n_chans + mirrored]);
            }
        }
        s_reg[tx][slot] = v;
        __syncthreads();

        if (base + ty < n_chans) {
            const ${k.tout} p = legacy_mul(s_h[ty][tx], s_reg[ty][tx]);
            const ${k.real} re = legacy_warp_sum(p.x);
            const ${k.real} im = legacy_warp_sum(p.y);
            if (tx == 0) {
                y[bid * n_chans + base + ty] = ${k.make}(re, im);
            }
        }
        __syncthreads();
    }
}

% endfor
"""
)

LegacyVariant = namedtuple("LegacyVariant", "suffix tin tout real zero make")

LEGACY_VARIANTS = (
    LegacyVariant("r2c", "float", "float2", "float", "0.0f", "make_float2"),
    LegacyVariant(
        "c2c", "float2", "float2", "float", "make_float2(0.0f, 0.0f)", "make_float2"
    ),
    LegacyVariant("d2z", "double", "double2", "double", "0.0", "make_double2"),
    LegacyVariant(
        "z2z", "double2", "double2", "double", "make_double2(0.0, 0.0)", "make_double2"
    ),
)

_MODULES = {}
_KERNELS = {}


def _get_module(legacy: bool):
    """Compiles (once) and returns the RawModule of one kernel family."""
    key = "legacy" if legacy else "primary"
    if key not in _MODULES:
        if not is_cupy_available():
            raise ImportError("CuPy is required for backend='cuda'.")
        import cupy as cp  # noqa: PLC0415

        if legacy:
            configs = all_kernel_configs(legacy=True)
            code = LEGACY_SOURCE.render(
                tile=configs[0].tile_size, variants=LEGACY_VARIANTS
            )
            module = cp.RawModule(code=code, options=("-std=c++11",))
        else:
            name_exps = [c.name_expression for c in all_kernel_configs()]
            module = cp.RawModule(
                code=PRIMARY_SOURCE,
                options=("-std=c++14",),
                name_expressions=name_exps,
            )
        logger.info(f"Prepared {key} channelizer kernel module.")
        _MODULES[key] = module
    return _MODULES[key]


def get_kernel(config: KernelConfig):
    """
    Returns the compiled kernel of one configuration.

    Args:
        config: Resolved kernel configuration.

    Returns:
        cupy.RawKernel for the entry point.

    Raises:
        ImportError: If CuPy is not available.
    """
    name = config.kernel_name
    if name not in _KERNELS:
        module = _get_module(config.legacy)
        _KERNELS[name] = module.get_function(name)
        logger.debug(f"Loaded kernel {name} (max {config.max_threads} threads/block).")
    return _KERNELS[name]


def launch(
    config: KernelConfig,
    x,
    h,
    y,
    n_chans: int,
    n_taps: int,
    n_pts: int,
    sample_blocks=None,
) -> None:
    """
    Launches one channelizer kernel.

    ``x``, ``h`` and ``y`` must be C-contiguous CuPy arrays with the dtypes of
    ``config.type_pair``; shapes are the caller's responsibility.

    Args:
        config: Resolved kernel configuration.
        x: Input samples, ``(n_pts_total, n_chans)``.
        h: Filter bank, ``(n_taps, n_chans)``.
        y: Output, ``(n_pts, n_chans)``.
        n_chans: Number of channels.
        n_taps: Taps per channel.
        n_pts: Number of output samples to compute.
        sample_blocks: ``gridDim.y``; see ``KernelConfig.grid``.
    """
    import cupy as cp  # noqa: PLC0415

    kernel = get_kernel(config)
    grid = config.grid(n_chans, n_pts, sample_blocks)
    logger.debug(
        f"Launching {config.kernel_name}: grid={grid}, block={config.block}, "
        f"n_chans={n_chans}, n_taps={n_taps}, n_pts={n_pts}"
    )
    try:
        kernel(
            grid,
            config.block,
            (np.int32(n_chans), np.int32(n_taps), np.int32(n_pts), x, h, y),
        )
    except cp.cuda.driver.CUDADriverError as e:
        logger.error(f"Launch of {config.kernel_name} failed: {e}")
        raise
