import numpy as np
import pytest
import importlib.util

from cropgrad.tensor import Tensor, _normalize_device
from tests.utils import assert_close, to_numpy


def test_factories_shapes_dtypes_requires_grad(device):
    z = Tensor.zeros(2, 3, 4, requires_grad=False, device=device)
    r = Tensor.randn(2, 3, 4, requires_grad=True, device=device)

    assert z.shape == (2, 3, 4)
    assert r.shape == (2, 3, 4)
    assert z.dtype == np.float32
    assert r.dtype == np.float32
    assert z.requires_grad is False
    assert r.requires_grad is True
    assert r.grad.shape == (2, 3, 4)

    assert_close(to_numpy(z.data), np.zeros((2, 3, 4), dtype=np.float32))


def test_data_is_stored_c_contiguous():
    x_np = np.arange(12, dtype=np.float32).reshape(3, 4).T

    x = Tensor(x_np)

    assert x.data.flags.c_contiguous
    assert_close(x.data, x_np)


def test_to_cpu_is_identity(device):
    x = Tensor.randn(2, 3, 4, requires_grad=False, device=device)
    y = x.to("cpu")
    assert_close(to_numpy(y.data), to_numpy(x.data))
    assert y.xp().__name__ == "numpy"


def test_repr_mentions_device_and_grad():
    x = Tensor([[1, 2], [3, 4]], requires_grad=True)

    assert "requires_grad=True" in repr(x)
    assert "device='cpu'" in repr(x)


@pytest.mark.parametrize("spec, expected", [(None, None), ("cpu", "cpu"), ("CUDA:1", "cuda")])
def test_normalize_device(spec, expected):
    assert _normalize_device(spec) == expected


def test_normalize_device_rejects_unknown():
    with pytest.raises(ValueError, match="Unknown device spec"):
        _normalize_device("gpu")


@pytest.mark.skipif(importlib.util.find_spec("cupy") is None, reason="cupy not installed")
def test_to_cuda_roundtrip():
    import cupy as cp

    x = Tensor.randn(2, 3, 4, requires_grad=False, device="cpu")
    xc = x.to("cuda")
    assert xc.xp().__name__.startswith("cupy")
    assert isinstance(xc.data, cp.ndarray)

    back = xc.to("cpu")
    assert back.xp().__name__ == "numpy"
    assert_close(to_numpy(back.data), to_numpy(x.data), atol=1e-6, rtol=1e-5)
