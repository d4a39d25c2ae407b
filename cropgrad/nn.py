from typing import Any, List, Sequence, Tuple, Union

from cropgrad.config import CropConfig
from cropgrad.tensor import Tensor

class Module:
    """
    Base class for all network modules.

    Submodules (:class:`Module`) and parameters (:class:`Tensor`) assigned as
    attributes are registered automatically via :meth:`__setattr__`. The
    public API mirrors a small subset of ``torch.nn.Module``.
    """
    def __init__(self) -> None:
        self._modules = {}
        self._parameters = {}
        self.training = True

    def parameters(self) -> List[Tensor]:
        """
        Return a flat list of all parameters in this module and its submodules,
        local parameters first, then those of children in insertion order.
        """
        params = list(self._parameters.values())
        for module in self._modules.values():
            params.extend(module.parameters())
        return params

    def train(self, mode: bool = True) -> "Module":
        """Set training mode for this module and all submodules; returns ``self``."""
        self.training = mode
        for module in self._modules.values():
            module.train(mode)
        return self

    def eval(self) -> "Module":
        return self.train(False)

    def __setattr__(self, name: str, value: Any) -> None:
        if isinstance(value, Module):
            self._modules[name] = value
        elif isinstance(value, Tensor):
            self._parameters[name] = value
        super().__setattr__(name, value)

    def __repr__(self):
        lines = [f"{self.__class__.__name__}("]
        for name, module in self._modules.items():
            mod_repr = "\n    ".join(repr(module).splitlines())
            lines.append(f"  ({name}): {mod_repr}")
        lines.append(")")
        return "\n".join(lines)

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self.forward(*args, **kwargs)

    def forward(self, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def to(self, device: str) -> "Module":
        """Move all parameters (and submodules) to ``device``; returns ``self``."""
        for param in self._parameters.values():
            param.to(device)
        for module in self._modules.values():
            module.to(device)
        return self

class Crop(Module):
    """
    Crop the first input to the extent of the second from ``axis`` on.

    Parameters
    ----------
    axis : int, default=0
        First cropped dimension; negative values count from the end.
    offset : int or sequence of int, default=()
        No value (all zero), one value for every cropped dimension, or one
        value per cropped dimension.

    Raises
    ------
    ConfigurationError
        If ``axis`` or ``offset`` are malformed. Shape-dependent checks happen
        on every forward call.

    Examples
    --------
    >>> crop = Crop(axis=2, offset=(1, 1))
    >>> y = crop(Tensor.randn(1, 3, 5, 5), Tensor.zeros(1, 3, 3, 3))
    >>> y.shape
    (1, 3, 3, 3)
    """
    def __init__(self, axis: int = 0, offset: Union[int, Sequence[int]] = ()) -> None:
        super().__init__()
        config = CropConfig(axis=axis, offset=offset)
        self.axis = config.axis
        self.offset: Tuple[int, ...] = config.offset

    @classmethod
    def from_config(cls, config: Any) -> "Crop":
        """Build from a :class:`CropConfig` or a mapping of crop parameters."""
        config = CropConfig.from_dict(config)
        return cls(axis=config.axis, offset=config.offset)

    def __repr__(self):
        return f"{self.__class__.__name__}(axis={self.axis}, offset={self.offset})"

    def forward(self, to_crop: Tensor, reference: Union[Tensor, Sequence[int]]) -> Tensor:
        return to_crop.crop(reference, axis=self.axis, offset=self.offset)

class SpatialCrop(Crop):
    """
    Caffe-style spatial crop of ``(N, C, H, W)`` tensors, as used by FCN
    skip connections: crops H and W to the reference starting at ``offset``.
    """
    def __init__(self, offset: Union[int, Tuple[int, int]] = 0) -> None:
        super().__init__(axis=2, offset=offset)

    def __repr__(self):
        return f"{self.__class__.__name__}(offset={self.offset})"
