import numpy as np
import pytest

try:
    import cupy as cp

    _CUPY_AVAILABLE = True
except ImportError:
    cp = None
    _CUPY_AVAILABLE = False

from polychan.config import clear_config


def pytest_addoption(parser):
    parser.addoption(
        "--device",
        action="store",
        default="cpu",
        help="Device to run tests on: cpu, gpu, or all",
    )


def pytest_generate_tests(metafunc):
    if "backend_device" in metafunc.fixturenames:
        device_opt = metafunc.config.getoption("--device")
        if device_opt == "all":
            params = ["cpu", "gpu"]
        elif device_opt == "gpu":
            params = ["gpu"]
        else:
            params = ["cpu"]

        metafunc.parametrize("backend_device", params)


@pytest.fixture
def backend_device(request):
    """
    Fixture that returns the backend device name.
    Skips GPU tests if CuPy is not available or functional.
    """
    device = request.param
    if device == "gpu":
        if not _CUPY_AVAILABLE:
            pytest.skip("CuPy not installed, skipping GPU tests")
        try:
            cp.zeros(1)
        except Exception as e:
            pytest.skip(f"CuPy installed but not functional (missing libs?): {e}")

    return device


@pytest.fixture
def xp(backend_device):
    """Returns the array module (numpy or cupy) for the current backend."""
    if backend_device == "gpu":
        return cp
    return np


@pytest.fixture
def gpu(backend_device):
    """Skips unless the GPU device is selected."""
    if backend_device != "gpu":
        pytest.skip("CUDA kernels need --device=gpu or --device=all")
    return cp


@pytest.fixture(autouse=True)
def _no_global_config():
    """Every test starts and ends without a global channelizer config."""
    clear_config()
    yield
    clear_config()


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


def random_bank(rng, n_pts, n_taps, n_chans, dtype):
    """Random input samples and filter bank of the given dtype."""
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.complexfloating):
        x = rng.standard_normal((n_pts, n_chans)) + 1j * rng.standard_normal(
            (n_pts, n_chans)
        )
        h = rng.standard_normal((n_taps, n_chans)) + 1j * rng.standard_normal(
            (n_taps, n_chans)
        )
    else:
        x = rng.standard_normal((n_pts, n_chans))
        h = rng.standard_normal((n_taps, n_chans))
    return x.astype(dtype), h.astype(dtype)


def direct_channelize(x, h, n_pts=None):
    """Element-by-element evaluation with explicit history bounds."""
    x = np.asarray(x)
    h = np.asarray(h)
    n_taps, n_chans = h.shape
    n_pts = x.shape[0] if n_pts is None else n_pts
    y = np.zeros((n_pts, n_chans), dtype=np.complex128)
    for n in range(n_pts):
        for c in range(n_chans):
            acc = 0j
            for k in range(min(n_taps, n + 1)):
                acc += np.conj(h[k, c]) * np.conj(x[n - k, n_chans - 1 - c])
            y[n, c] = acc
    return y
