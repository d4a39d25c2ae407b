from typing import Any, List, Literal, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np
from loguru import logger

from cropgrad.config import ConfigurationError, CropConfig
from cropgrad.tensor import Tensor, _is_cupy_array, cp

_Direction = Literal["extract", "scatter"]


class ResolvedCrop(NamedTuple):
    """
    Crop geometry resolved against concrete input shapes.

    Attributes
    ----------
    axis : int
        Canonical (non-negative) first cropped dimension.
    offsets : tuple of int
        One offset per source dimension, zero before ``axis``.
    shape : tuple of int
        Output shape: source extent before ``axis``, reference extent from
        ``axis`` on.
    """
    axis: int
    offsets: Tuple[int, ...]
    shape: Tuple[int, ...]


def canonical_axis(axis: int, rank: int) -> int:
    """
    Map a possibly negative axis onto ``[0, rank)``.

    Raises
    ------
    ConfigurationError
        If ``axis`` is outside ``[-rank, rank)``.

    Examples
    --------
    >>> canonical_axis(-1, 4)
    3
    >>> canonical_axis(4, 4)
    Traceback (most recent call last):
        ...
    cropgrad.config.ConfigurationError: crop axis 4 out of range for a tensor of rank 4
    """
    if not -rank <= axis < rank:
        raise ConfigurationError(f"crop axis {axis} out of range for a tensor of rank {rank}")
    return axis + rank if axis < 0 else axis


def _check_offset_count(offset: Sequence[int], axis: int, rank: int) -> None:
    if len(offset) > 1 and axis + len(offset) != rank:
        raise ConfigurationError(
            f"number of offset values ({len(offset)}) must be 0, 1 or equal to the "
            f"number of dimensions from axis {axis} on ({rank - axis})"
        )


def resolve_crop(
    source_shape: Sequence[int],
    reference_shape: Sequence[int],
    axis: int = 0,
    offset: Union[int, Sequence[int]] = (),
) -> ResolvedCrop:
    """
    Resolve per-dimension crop offsets and the output shape.

    Parameters
    ----------
    source_shape : sequence of int
        Shape of the tensor being cropped.
    reference_shape : sequence of int
        Shape of the tensor whose extent (from ``axis`` on) the crop takes.
    axis : int, default=0
        First cropped dimension; negative values count from the end.
    offset : int or sequence of int, default=()
        No value (all zero), one value broadcast to every cropped dimension,
        or one value per cropped dimension.

    Returns
    -------
    ResolvedCrop
        Canonical axis, per-dimension offsets and output shape.

    Raises
    ------
    ConfigurationError
        On rank mismatch, an out-of-range axis, a bad offset count, a negative
        offset, or if the window does not fit in some dimension. The message
        names the offending dimension.

    Examples
    --------
    >>> resolve_crop((1, 3, 5, 5), (1, 3, 3, 3), axis=2, offset=(1, 1))
    ResolvedCrop(axis=2, offsets=(0, 0, 1, 1), shape=(1, 3, 3, 3))
    """
    config = CropConfig(axis=axis, offset=offset)
    source_shape = tuple(int(s) for s in source_shape)
    reference_shape = tuple(int(s) for s in reference_shape)

    rank = len(source_shape)
    if len(reference_shape) != rank:
        raise ConfigurationError(
            f"crop inputs must have the same rank, got {rank} and {len(reference_shape)}"
        )
    start = canonical_axis(config.axis, rank)
    _check_offset_count(config.offset, start, rank)

    offsets: List[int] = [0] * rank
    shape = list(source_shape)
    for i in range(start, rank):
        if len(config.offset) == 1:
            offsets[i] = config.offset[0]
        elif len(config.offset) > 1:
            offsets[i] = config.offset[i - start]
        if source_shape[i] - offsets[i] < reference_shape[i]:
            raise ConfigurationError(
                f"invalid crop parameters in dimension: {i} "
                f"(source {source_shape[i]} - offset {offsets[i]} < reference {reference_shape[i]})"
            )
        shape[i] = reference_shape[i]

    resolved = ResolvedCrop(start, tuple(offsets), tuple(shape))
    logger.debug(
        "Resolved crop of {} to {}: axis={}, offsets={}",
        source_shape, resolved.shape, resolved.axis, resolved.offsets,
    )
    return resolved


def row_major_strides(shape: Sequence[int]) -> Tuple[int, ...]:
    """
    Element strides of a C-contiguous array of ``shape``.

    >>> row_major_strides((2, 3, 4))
    (12, 4, 1)
    """
    strides = [1] * len(shape)
    for i in range(len(shape) - 2, -1, -1):
        strides[i] = strides[i + 1] * int(shape[i + 1])
    return tuple(strides)


def copy_region(
    offsets: Sequence[int],
    output_shape: Sequence[int],
    source: Any,
    source_strides: Sequence[int],
    dest: Any,
    dest_strides: Sequence[int],
    direction: _Direction = "extract",
) -> None:
    """
    Copy an ``output_shape`` block between two flat row-major buffers.

    The block sits at ``offsets`` inside the larger of the two tensors. The
    outer dimensions are walked with an odometer counter (last outer index
    fastest) and every row along the last dimension, which is contiguous in
    both buffers, is moved with a single slice assignment.

    Parameters
    ----------
    offsets : sequence of int
        Per-dimension position of the block in the larger tensor.
    output_shape : sequence of int
        Extent of the block (the shape of the smaller tensor).
    source, dest : numpy.ndarray or cupy.ndarray
        One-dimensional views of C-contiguous buffers. ``dest`` is written.
    source_strides, dest_strides : sequence of int
        Element strides of the tensors the buffers belong to.
    direction : {'extract', 'scatter'}, default='extract'
        ``'extract'`` reads the block out of the larger ``source`` into the
        compact ``dest``; ``'scatter'`` reads the compact ``source`` and
        writes it into the block inside the larger ``dest``.

    Raises
    ------
    ValueError
        If ``direction`` is not one of the two tags.

    Notes
    -----
    - The rank is ``len(output_shape)``; ``offsets`` and both stride
      sequences have that length.
    - No bounds checks are done here; the geometry is validated by
      :func:`resolve_crop`.
    - The number of slice assignments is ``prod(output_shape[:-1])``.
    - A zero-extent block copies nothing.
    """
    rank = len(output_shape)
    unshifted = (0,) * rank
    if direction == "extract":
        src_shift, dst_shift = tuple(offsets), unshifted
    elif direction == "scatter":
        src_shift, dst_shift = unshifted, tuple(offsets)
    else:
        raise ValueError(f"Unknown copy direction: {direction!r}")

    if rank == 0 or any(int(n) == 0 for n in output_shape):
        return

    run = int(output_shape[-1])
    src_base = src_shift[-1] * source_strides[-1]
    dst_base = dst_shift[-1] * dest_strides[-1]
    index = [0] * (rank - 1)

    while True:
        s = src_base
        d = dst_base
        for dim, i in enumerate(index):
            s += (i + src_shift[dim]) * source_strides[dim]
            d += (i + dst_shift[dim]) * dest_strides[dim]
        dest[d:d + run] = source[s:s + run]

        dim = rank - 2
        while dim >= 0:
            index[dim] += 1
            if index[dim] < output_shape[dim]:
                break
            index[dim] = 0
            dim -= 1
        else:
            return


def _backend_of(x: Any) -> Any:
    return cp if _is_cupy_array(x) else np


def crop_forward(
    source: Any,
    resolved: ResolvedCrop,
    out: Optional[Any] = None,
) -> Any:
    """
    Extract the crop window of ``source`` into ``out``.

    Parameters
    ----------
    source : numpy.ndarray or cupy.ndarray
        Array of the source shape.
    resolved : ResolvedCrop
        Geometry from :func:`resolve_crop`.
    out : array, optional
        C-contiguous array of ``resolved.shape`` to overwrite. Allocated on
        the source's backend with the source's dtype when omitted.

    Returns
    -------
    array
        ``out``, fully overwritten with
        ``source[offsets[0]:offsets[0]+shape[0], ...]``.
    """
    xp = _backend_of(source)
    source = xp.ascontiguousarray(source)
    if out is None:
        out = xp.empty(resolved.shape, dtype=source.dtype)
    elif not out.flags.c_contiguous:
        raise ValueError("crop output buffer must be C-contiguous")
    copy_region(
        resolved.offsets, resolved.shape,
        source.reshape(-1), row_major_strides(source.shape),
        out.reshape(-1), row_major_strides(resolved.shape),
        "extract",
    )
    return out


def crop_backward(
    output_grad: Any,
    resolved: ResolvedCrop,
    source_grad: Any,
    propagate: bool = True,
) -> Any:
    """
    Scatter the gradient of a crop back onto its source.

    When ``propagate`` is False, ``source_grad`` is returned untouched.
    Otherwise it is zero-filled and ``output_grad`` is written into the crop
    window, so the result equals ``output_grad`` inside the window and zero
    everywhere else (the adjoint of :func:`crop_forward`).

    ``source_grad`` must be C-contiguous and must not alias ``output_grad``.
    """
    if not propagate:
        return source_grad
    xp = _backend_of(output_grad)
    if not source_grad.flags.c_contiguous:
        raise ValueError("crop source gradient buffer must be C-contiguous")
    output_grad = xp.ascontiguousarray(output_grad)
    source_grad.fill(0)
    copy_region(
        resolved.offsets, resolved.shape,
        output_grad.reshape(-1), row_major_strides(resolved.shape),
        source_grad.reshape(-1), row_major_strides(source_grad.shape),
        "scatter",
    )
    return source_grad


class CropLayer:
    """
    Crop layer with an explicit setup/reshape/forward/backward lifecycle.

    The first input supplies the data, the second the size of the crop from
    ``axis`` on. The layer owns its output tensor and keeps the geometry of
    the last successful :meth:`reshape`.

    Attributes
    ----------
    config : CropConfig or None
        Parameters given to :meth:`setup`.
    resolved : ResolvedCrop or None
        Geometry of the last successful :meth:`reshape`.
    output : Tensor or None
        Output tensor, reallocated by :meth:`reshape`.

    Examples
    --------
    >>> layer = CropLayer()
    >>> x, ref = Tensor.randn(1, 3, 5, 5), Tensor.zeros(1, 3, 3, 3)
    >>> layer.setup([x, ref], {"axis": 2, "offset": [1, 1]})
    >>> layer.reshape([x, ref])
    (1, 3, 3, 3)
    >>> y = layer.forward([x, ref])
    """
    def __init__(self) -> None:
        self.config: Optional[CropConfig] = None
        self.resolved: Optional[ResolvedCrop] = None
        self.output: Optional[Tensor] = None

    def __repr__(self) -> str:
        return f"CropLayer(config={self.config!r}, resolved={self.resolved!r})"

    @staticmethod
    def _check_inputs(inputs: Sequence[Tensor]) -> None:
        if len(inputs) != 2:
            raise ConfigurationError(f"Wrong number of crop inputs: expected 2, got {len(inputs)}")

    def setup(self, inputs: Sequence[Tensor], config: Any) -> None:
        """
        Validate everything that depends only on the number of dimensions.

        Parameters
        ----------
        inputs : sequence of Tensor
            ``[source, reference]``.
        config : CropConfig or mapping
            Crop parameters; mappings go through :meth:`CropConfig.from_dict`.

        Raises
        ------
        ConfigurationError
            On a wrong input count, mismatched ranks, an out-of-range axis or
            a bad offset count.
        """
        self._check_inputs(inputs)
        config = CropConfig.from_dict(config)
        rank = inputs[0].ndim
        if inputs[1].ndim != rank:
            raise ConfigurationError(
                f"crop inputs must have the same rank, got {rank} and {inputs[1].ndim}"
            )
        start = canonical_axis(config.axis, rank)
        _check_offset_count(config.offset, start, rank)
        self.config = config
        self.resolved = None
        self.output = None
        logger.debug("CropLayer set up with {} for rank {}", config, rank)

    def reshape(self, inputs: Sequence[Tensor]) -> Tuple[int, ...]:
        """
        Resolve the crop for the current input shapes and allocate the output.

        A failing reshape leaves the previous geometry and output in place.

        Returns
        -------
        tuple of int
            The output shape.
        """
        if self.config is None:
            raise RuntimeError("CropLayer.setup() must be called before reshape()")
        self._check_inputs(inputs)
        source, reference = inputs
        resolved = resolve_crop(source.shape, reference.shape, self.config.axis, self.config.offset)

        xp = source.xp()
        output = Tensor(xp.zeros(resolved.shape, dtype=source.dtype))
        self.resolved, self.output = resolved, output
        return resolved.shape

    def _require_reshaped(self) -> ResolvedCrop:
        if self.resolved is None or self.output is None:
            raise RuntimeError("CropLayer.reshape() must be called before forward()/backward()")
        return self.resolved

    def forward(self, inputs: Sequence[Tensor]) -> Tensor:
        """Write the crop of ``inputs[0]`` into :attr:`output` and return it."""
        resolved = self._require_reshaped()
        crop_forward(inputs[0].data, resolved, out=self.output.data)
        return self.output

    def backward(
        self,
        inputs: Sequence[Tensor],
        propagate_down: Sequence[bool],
        output_grad: Optional[Any] = None,
    ) -> Optional[Any]:
        """
        Write the gradient of ``inputs[0]`` into ``inputs[0].grad``.

        Parameters
        ----------
        inputs : sequence of Tensor
            ``[source, reference]`` as given to :meth:`forward`.
        propagate_down : sequence of bool
            Per-input flags. Only the first is consulted; the reference input
            never receives a gradient.
        output_grad : array, optional
            Gradient w.r.t. the output. Defaults to ``self.output.grad``.

        Returns
        -------
        array or None
            The source gradient buffer (left untouched when
            ``propagate_down[0]`` is False; None if it was never allocated).
        """
        resolved = self._require_reshaped()
        source = inputs[0]
        if not propagate_down[0]:
            return source.grad
        if output_grad is None:
            output_grad = self.output.grad
        if output_grad is None:
            raise RuntimeError("CropLayer.backward() needs an output gradient")
        if source.grad is None:
            source.grad = source.xp().zeros_like(source.data)
        return crop_backward(output_grad, resolved, source.grad, propagate=True)
