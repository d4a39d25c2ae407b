from typing import Any, Iterable, Optional, Literal, Sequence, Tuple, Union

import numpy as np
try:
    import cupy as cp
    _HAS_CUPY = True
except Exception:
    cp = None
    _HAS_CUPY = False

def _is_cupy_array(x: Any) -> bool:
    """
    Return whether ``x`` is a CuPy ndarray.

    Safe when CuPy is not installed: it short-circuits on ``_HAS_CUPY``.
    """
    return _HAS_CUPY and hasattr(cp, "ndarray") and isinstance(x, cp.ndarray)

_DeviceStr = Literal["cpu", "cuda"]
def _normalize_device(device: Optional[Union[str, _DeviceStr]]) -> Optional[_DeviceStr]:
    """
    Normalize a device specifier to 'cpu', 'cuda', or None.

    Parameters
    ----------
    device : {None, 'cpu', 'cuda', str}
        Device specifier. Strings starting with 'cuda' (e.g. 'cuda:0') map to
        'cuda'.

    Raises
    ------
    ValueError
        If ``device`` is a string that is neither 'cpu' nor starts with 'cuda'.

    Examples
    --------
    >>> _normalize_device('cuda:1')
    'cuda'
    >>> _normalize_device('gpu')
    Traceback (most recent call last):
        ...
    ValueError: Unknown device spec: 'gpu'
    """
    if device is None:
        return None
    if isinstance(device, str):
        dev = device.lower()
        if dev.startswith("cuda"):
            return "cuda"
        if dev == "cpu":
            return "cpu"
    raise ValueError(f"Unknown device spec: {device!r}")

def _backend_for(device: Optional[str]) -> Any:
    dev = _normalize_device(device) or "cpu"
    if dev == "cuda":
        if not _HAS_CUPY:
            raise RuntimeError("CUDA requested but CuPy is not installed/available.")
        return cp
    return np

_grad_enabled = True
"""bool: Global flag indicating whether automatic differentiation is enabled.

Toggled by the :class:``no_grad`` context manager.
"""

class no_grad:
    """
    Context manager that temporarily disables gradient tracking.

    Tensors created inside the context do not record the operations that
    produced them, so no gradient flows back through them. Nesting is safe;
    the previous state is restored on exit.

    Examples
    --------
    >>> with no_grad():
    ...     y = x.crop(ref, axis=2)   # not tracked
    """
    def __enter__(self):
        global _grad_enabled
        self.prev = _grad_enabled
        _grad_enabled = False

    def __exit__(self, *args):
        global _grad_enabled
        _grad_enabled = self.prev

class Tensor:
    """
    A C-contiguous ``float32`` array with a gradient buffer and autograd.

    Notes
    -----
    - Backend is chosen per tensor: CPU uses NumPy, CUDA uses CuPy.
    - Data is always stored C-contiguous (row-major), so the last dimension
      is a contiguous run in the flat buffer.
    - ``.grad`` is allocated eagerly as ``zeros_like(data)`` only if
      ``requires_grad`` is True *and* global grad mode is enabled.
    """
    def __init__(
        self,
        data: Any,
        _prev: Iterable["Tensor"] = (),
        requires_grad: bool = False,
        device: Optional[str] = None,
    ) -> None:
        """
        Construct a tensor from array-like data.

        Parameters
        ----------
        data : Any
            Array-like input. Without ``device`` the backend is inferred from
            ``data`` (CuPy arrays stay on CUDA, everything else goes to NumPy).
        _prev : Iterable[Tensor], optional
            Internal: parents in the computation graph.
        requires_grad : bool, default False
            Track operations on this tensor for :meth:``backward``.
        device : {'cpu', 'cuda', 'cuda:0', ...} or None, optional
            Target device.

        Raises
        ------
        RuntimeError
            If ``device`` requests CUDA but CuPy is not installed/available.
        """
        dev = _normalize_device(device)
        if dev is not None:
            backend = _backend_for(dev)
        elif _is_cupy_array(data):
            backend = cp
        else:
            backend = np

        self.backend = backend
        self.data = backend.ascontiguousarray(backend.asarray(data, dtype=backend.float32))
        self.requires_grad = bool(requires_grad) and _grad_enabled
        self.grad = self.backend.zeros_like(self.data) if self.requires_grad else None

        self._backward = lambda: None
        self._prev = set(_prev)

    @property
    def shape(self) -> Tuple[int, ...]:
        """tuple of int: The tensor's shape."""
        return self.data.shape

    @property
    def dtype(self) -> Union[np.dtype, str]:
        """numpy.dtype: The data type of the tensor."""
        return self.data.dtype

    @property
    def ndim(self) -> int:
        """int: The number of dimensions of the tensor."""
        return self.data.ndim

    @property
    def size(self) -> int:
        """int: Total number of elements in the tensor."""
        return self.data.size

    def crop(
        self,
        reference: Union["Tensor", Sequence[int]],
        axis: int = 0,
        offset: Union[int, Sequence[int]] = (),
    ) -> "Tensor":
        """
        Crop this tensor to the extent of ``reference`` from ``axis`` on.

        Parameters
        ----------
        reference : Tensor or sequence of int
            Tensor (or shape) of the same rank giving the output extent for
            every dimension from ``axis`` on. It never receives a gradient.
        axis : int, default=0
            First cropped dimension; negative values count from the end.
        offset : int or sequence of int, default=()
            No value, one value broadcast to all cropped dimensions, or one
            value per cropped dimension.

        Returns
        -------
        Tensor
            The window ``self[..., o:o+r, ...]`` along every cropped dimension.

        Raises
        ------
        ConfigurationError
            If the crop parameters do not fit the shapes.

        Notes
        -----
        The backward pass is the exact adjoint: the upstream gradient lands
        inside the window and every element outside it gets zero.

        Examples
        --------
        >>> x = Tensor.randn(1, 3, 5, 5, requires_grad=True)
        >>> y = x.crop((1, 3, 3, 3), axis=2, offset=1)
        >>> y.shape
        (1, 3, 3, 3)
        """
        from cropgrad.crop import crop_backward, crop_forward, resolve_crop

        ref_shape = reference.shape if isinstance(reference, Tensor) else tuple(reference)
        resolved = resolve_crop(self.shape, ref_shape, axis, offset)
        out = Tensor(crop_forward(self.data, resolved), _prev=(self,), requires_grad=self.requires_grad)

        def _backward():
            grad_full = self.backend.empty_like(self.data)
            crop_backward(out.grad, resolved, grad_full)
            Tensor._accumulate_grad(self, grad_full)
        out._backward = _backward

        return out

    def backward(
        self,
        gradient: Optional[Any] = None,
    ) -> None:
        """
        Backpropagate from this tensor through the computation graph.

        Parameters
        ----------
        gradient : array-like, optional
            Gradient of the output with respect to itself. Defaults to
            ``ones_like(self.data)``, which also works for non-scalar tensors.

        Raises
        ------
        RuntimeError
            If the tensor does not require gradients.
        """
        if not self.requires_grad:
            raise RuntimeError("Tensor does not require gradient")
        if gradient is None:
            self.grad = self.backend.ones_like(self.data)
        else:
            self.grad = self.backend.array(gradient, dtype=self.data.dtype)

        visited = set()
        topo = []

        def build_topo(t):
            if t not in visited:
                visited.add(t)
                for child in t._prev:
                    build_topo(child)
                topo.append(t)

        build_topo(self)

        for t in reversed(topo):
            if t.requires_grad:
                t._backward()

    def zero_grad(self) -> None:
        """Reset the gradient of this tensor to zero."""
        if self.requires_grad:
            self.grad = self.backend.zeros_like(self.data)

    def __repr__(self) -> str:
        data_str = self.backend.array2string(self.data, separator=', ', prefix='tensor(')
        dev = "cuda" if (_HAS_CUPY and self.backend is cp) else "cpu"
        return f"tensor({data_str}, dtype={self.data.dtype}, requires_grad={self.requires_grad}, device='{dev}')"

    def to(
        self,
        device: str,
    ) -> "Tensor":
        """
        Move data and gradient to ``device`` in place and return ``self``.

        Raises
        ------
        RuntimeError
            If ``"cuda"`` is requested but CuPy is not installed or available.
        """
        dev = _normalize_device(device)
        if dev == "cpu" and _HAS_CUPY and self.backend is cp:
            self.data = cp.asnumpy(self.data)
            self.grad = cp.asnumpy(self.grad) if self.grad is not None else None
            self.backend = np
        elif dev == "cuda" and self.backend is not (cp if _HAS_CUPY else None):
            backend = _backend_for(dev)
            self.data = backend.asarray(self.data)
            self.grad = backend.asarray(self.grad) if self.grad is not None else None
            self.backend = backend
        return self

    def xp(self) -> Any:
        """Return the current array backend (NumPy or CuPy)."""
        return self.backend

    @staticmethod
    def _accumulate_grad(
        tensor: "Tensor",
        grad: Any,
    ) -> None:
        """
        Add a gradient contribution into ``tensor.grad``.

        Gradients are accumulated, not overwritten, because a tensor may feed
        the output through several paths. No-op if ``tensor.requires_grad`` is
        False.
        """
        if tensor.requires_grad:
            if tensor.grad is None:
                tensor.grad = grad
            else:
                tensor.grad += grad

    @staticmethod
    def zeros(
        *shape: int,
        requires_grad: bool = False,
        device: Optional[str] = "cpu",
    ) -> "Tensor":
        """Create a ``float32`` tensor of zeros on ``device``."""
        xp = _backend_for(device)
        return Tensor(xp.zeros(shape, dtype=xp.float32), requires_grad=requires_grad)

    @staticmethod
    def randn(
        *shape: int,
        requires_grad: bool = False,
        scale: float = 1.0,
        device: Optional[str] = "cpu",
    ) -> "Tensor":
        """
        Create a tensor with values drawn from ``N(0, scale^2)``.

        Parameters
        ----------
        *shape : int
            Shape of the output tensor.
        requires_grad : bool, default=False
            Track operations on the tensor for autograd.
        scale : float, default=1.0
            Multiplicative scale applied to the sampled values.
        device : str or None, default="cpu"
            Target device (``"cpu"`` or ``"cuda"``).
        """
        xp = _backend_for(device)
        data = scale * xp.random.randn(*shape).astype(xp.float32)
        return Tensor(data, requires_grad=requires_grad)
