import numbers
from typing import Any, Mapping, Sequence, Tuple, Union

import addict
import yaml


class ConfigurationError(ValueError):
    """
    Raised when crop parameters are inconsistent with each other or with the
    shapes of the tensors they are applied to.

    Covers a wrong number of inputs, mismatched ranks, an axis outside
    ``[-rank, rank)``, a malformed offset count, negative offsets, and crop
    windows that do not fit inside the source tensor.
    """


def read_config(path: str) -> addict.Dict:
    with open(path, "r") as yfs:
        return addict.Dict(yaml.safe_load(yfs))


def _is_int(x: Any) -> bool:
    # Python and NumPy integers; bool is Integral but never a valid axis or offset.
    return isinstance(x, numbers.Integral) and not isinstance(x, bool)


class CropConfig:
    """
    Static crop parameters: the first cropped axis and the crop offsets.

    Parameters
    ----------
    axis : int, default=0
        First dimension to crop. Negative values count from the last
        dimension and are resolved against the source rank at setup time.
    offset : int or sequence of int, default=()
        Crop offsets. Either empty (offset 0 everywhere), a single value
        broadcast to every dimension from ``axis`` on, or exactly one value
        per dimension from ``axis`` on.

    Raises
    ------
    ConfigurationError
        If ``axis`` is not an integer or any offset is not a non-negative
        integer.

    Examples
    --------
    >>> CropConfig(axis=2, offset=(1, 1))
    CropConfig(axis=2, offset=(1, 1))
    >>> CropConfig(axis=1, offset=4).offset
    (4,)
    """
    def __init__(
        self,
        axis: int = 0,
        offset: Union[int, Sequence[int]] = (),
    ) -> None:
        if not _is_int(axis):
            raise ConfigurationError(f"crop axis must be an integer, got {axis!r}")
        if _is_int(offset):
            offset = (offset,)
        offset = tuple(offset)
        for i, value in enumerate(offset):
            if not _is_int(value):
                raise ConfigurationError(f"crop offset {i} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"crop offset {i} must be non-negative, got {value}")
        self.axis = int(axis)
        self.offset: Tuple[int, ...] = tuple(int(value) for value in offset)

    def __repr__(self) -> str:
        return f"CropConfig(axis={self.axis}, offset={self.offset})"

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, CropConfig):
            return NotImplemented
        return self.axis == other.axis and self.offset == other.offset

    @classmethod
    def from_dict(cls, mapping: Mapping[str, Any]) -> "CropConfig":
        """
        Build a config from a mapping such as a parsed YAML document.

        A nested ``crop_param`` section is unwrapped first, so both
        ``{"axis": 2}`` and ``{"crop_param": {"axis": 2}}`` are accepted.
        Missing keys take their defaults; unknown keys are rejected.
        """
        if isinstance(mapping, CropConfig):
            return mapping
        if "crop_param" in mapping:
            mapping = mapping["crop_param"]
        params = dict(mapping)
        unknown = sorted(set(params) - {"axis", "offset"})
        if unknown:
            raise ConfigurationError(f"unknown crop parameters: {', '.join(map(str, unknown))}")
        offset = params.get("offset", ())
        if offset is None:
            offset = ()
        return cls(axis=params.get("axis", 0), offset=offset)

    @classmethod
    def from_file(cls, path: str) -> "CropConfig":
        """Load crop parameters from a YAML file (see :meth:`from_dict`)."""
        return cls.from_dict(read_config(path))
