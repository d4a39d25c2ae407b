import numpy as np
import pytest
import torch

from cropgrad.config import ConfigurationError, CropConfig
from cropgrad.nn import Crop, Module, SpatialCrop
from cropgrad.tensor import Tensor
from tests.utils import make_tensor, make_torch, tdata, assert_close, assert_grad_close


def test_crop_module_forward_backward(rng, device):
    x_np = rng.normal(size=(2, 4, 7, 6)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, requires_grad=True, device=device)
    ref = make_tensor(np.zeros((2, 2, 3, 6)), requires_grad=False, device=device)

    crop = Crop(axis=1, offset=(1, 2, 0))
    yt = xt[:, 1:3, 2:5, :]
    y = crop(x, ref)

    yt.backward(torch.ones_like(yt))
    y.backward()

    assert_close(tdata(y), yt.detach().cpu().numpy())
    assert_grad_close(x, xt)


def test_spatial_crop_matches_fcn_skip_crop(rng, device):
    # FCN-32s style: upscore (N, C, 64+h, 64+w) cropped to the input at offset 19.
    x_np = rng.normal(size=(1, 2, 84, 90)).astype(np.float32)

    xt = make_torch(x_np, requires_grad=True)
    x = make_tensor(x_np, requires_grad=True, device=device)

    yt = xt[:, :, 19:19 + 40, 19:19 + 50]
    y = SpatialCrop(19)(x, (1, 2, 40, 50))

    yt.backward(torch.ones_like(yt))
    y.backward()

    assert y.shape == (1, 2, 40, 50)
    assert_close(tdata(y), yt.detach().cpu().numpy())
    assert_grad_close(x, xt)


def test_spatial_crop_per_axis_offsets(rng):
    x_np = rng.normal(size=(1, 1, 6, 6)).astype(np.float32)

    y = SpatialCrop((2, 1))(make_tensor(x_np), (1, 1, 3, 3))

    assert_close(tdata(y), x_np[:, :, 2:5, 1:4])


def test_crop_module_validates_config_eagerly():
    with pytest.raises(ConfigurationError, match="non-negative"):
        Crop(axis=1, offset=-1)
    with pytest.raises(ConfigurationError, match="integer"):
        Crop(axis=1.5)


def test_crop_module_shape_errors_surface_on_forward():
    crop = Crop(axis=1, offset=5)

    with pytest.raises(ConfigurationError, match="dimension: 1"):
        crop(Tensor.zeros(2, 10, 10), Tensor.zeros(2, 10, 10))


def test_crop_from_config():
    crop = Crop.from_config({"crop_param": {"axis": 2, "offset": [1, 1]}})

    assert crop.axis == 2
    assert crop.offset == (1, 1)
    assert Crop.from_config(CropConfig(axis=-1)).axis == -1


def test_module_registration_and_modes():
    class Head(Module):
        def __init__(self):
            super().__init__()
            self.scale = Tensor.randn(1, requires_grad=True)
            self.crop = SpatialCrop(1)

        def forward(self, x, ref):
            return self.crop(x, ref)

    head = Head()

    assert head.parameters() == [head.scale]
    assert head.crop.parameters() == []
    assert head.eval() is head
    assert head.training is False and head.crop.training is False
    head.train()
    assert head.crop.training is True
    assert "(crop): SpatialCrop(offset=(1,))" in repr(head)
    assert repr(Crop(axis=2, offset=(1, 1))) == "Crop(axis=2, offset=(1, 1))"


def test_module_gradients_flow_through_nested_crops(rng):
    class Head(Module):
        def __init__(self):
            super().__init__()
            self.outer = SpatialCrop(1)
            self.inner = Crop(axis=-1, offset=2)

        def forward(self, x):
            return self.inner(self.outer(x, (1, 1, 4, 4)), (1, 1, 4, 2))

    x_np = rng.normal(size=(1, 1, 6, 6)).astype(np.float32)
    g_np = rng.normal(size=(1, 1, 4, 2)).astype(np.float32)
    x = make_tensor(x_np, requires_grad=True)
    head = Head()

    y = head(x)
    y.backward(g_np)

    expected = np.zeros((1, 1, 6, 6), dtype=np.float32)
    expected[:, :, 1:5, 3:5] = g_np
    assert_close(tdata(y), x_np[:, :, 1:5, 3:5])
    assert_close(x.grad, expected)
    assert head.parameters() == []

def test_module_forward_is_abstract():
    with pytest.raises(NotImplementedError):
        Module()()


def test_module_to_cpu_keeps_parameters():
    crop = Crop()
    crop.bias = Tensor.zeros(3)

    assert crop.to("cpu") is crop
    assert crop.parameters()[0].xp().__name__ == "numpy"
