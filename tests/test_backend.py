import numpy as np
import pytest

from polychan import backend


def test_get_array_module():
    arr_cpu = np.array([1, 2, 3])
    assert backend.get_array_module(arr_cpu) == np
    assert backend.get_array_module([1, 2, 3]) == np


def test_to_device(backend_device, xp):
    data = np.array([1, 2, 3])

    device_data = backend.to_device(data, backend_device)

    assert isinstance(device_data, xp.ndarray)
    assert np.allclose(backend.to_device(device_data, "cpu"), data)
    assert backend.get_array_module(device_data) == xp


def test_to_device_unknown():
    with pytest.raises(ValueError, match="Unknown device"):
        backend.to_device(np.zeros(1), "tpu")


def test_to_host(backend_device, xp):
    data = xp.asarray([1.0, 2.0])
    host = backend.to_host(data)
    assert isinstance(host, np.ndarray)
    assert backend.to_host([1, 2]).tolist() == [1, 2]


def test_dispatch(backend_device, xp):
    data_in = backend.to_device(np.array([1, 2, 3]), backend_device)

    out_data, out_xp, out_sp = backend.dispatch(data_in)

    assert out_xp == xp
    assert isinstance(out_data, xp.ndarray)
    assert hasattr(out_sp, "signal")


def test_dispatch_list():
    out_data, out_xp, _ = backend.dispatch([1.0, 2.0])
    assert isinstance(out_data, out_xp.ndarray)


def test_cpu_only_toggle():
    backend.use_cpu_only(False)
    initial_status = backend.is_cupy_available()

    backend.use_cpu_only(True)
    assert backend.is_cupy_available() is False
    with pytest.raises(ImportError):
        backend.to_device(np.zeros(1), "gpu")

    backend.use_cpu_only(False)
    assert backend.is_cupy_available() == initial_status


def test_cpu_only_routes_device_data_to_host(backend_device, xp):
    data = xp.asarray([1.0, 2.0, 3.0])
    assert backend.is_cupy_array(data) is (backend_device == "gpu")

    backend.use_cpu_only(True)
    try:
        assert backend.is_cupy_array(data) is False
        host = backend.to_host(data)
        assert isinstance(host, np.ndarray)
        np.testing.assert_array_equal(host, [1.0, 2.0, 3.0])
    finally:
        backend.use_cpu_only(False)


def test_numba_loader():
    numba = backend._get_numba()
    assert numba is not None
    assert backend._get_numba() is numba


def test_jax_interop(backend_device, xp):
    jnp = pytest.importorskip("jax.numpy")

    data = xp.array([1.0, 2.0, 3.0])
    jax_arr = backend.to_jax(data)
    assert isinstance(jax_arr, jnp.ndarray)

    back_arr = backend.from_jax(jax_arr, like=data)
    assert isinstance(back_arr, xp.ndarray)
    assert np.allclose(backend.to_host(back_arr), [1.0, 2.0, 3.0])
