"""
Activation normalization layer (Kingma & Dhariwal, 2018).

The per-channel scale and bias are initialized from the first batch seen by
``forward`` so that the output of that batch has zero mean and unit
variance along every channel. They are reused unchanged afterwards, until
``reset`` is called.
"""

import logging
from typing import List

import jax.numpy as jnp

from ..parameter import Parameter
from ..utils.tensors import (
    channel_view,
    check_like,
    check_ndim,
    logdet_scale_backward,
    logdet_scale_forward,
    non_channel_axes,
    spatial_size,
)
from .base import InvertibleLayer

logger = logging.getLogger(__name__)

# ==============================================================================
# ActNorm
# ==============================================================================


class ActNorm(InvertibleLayer):
    """Activation normalization with data-dependent initialization.

    Works on 2D ``(nx, ny, k, N)`` and 3D ``(nx, ny, nz, k, N)`` tensors.

    Parameters
    ----------
    k : int
        Number of channels.
    logdet : bool
        If True, ``forward`` also returns the log-determinant.

    Attributes
    ----------
    s : Parameter
        Per-channel scale, ``None`` until the first forward call.
    b : Parameter
        Per-channel bias, ``None`` until the first forward call.

    Examples
    --------
    >>> AN = ActNorm(4, logdet=True)
    >>> Y, logdet = AN.forward(X)
    >>> X_ = AN.inverse(Y)
    >>> dX, X_ = AN.backward(dY, Y)
    """

    def __init__(self, k: int, logdet: bool = False):
        self.k = k
        self.s = Parameter(None)
        self.b = Parameter(None)
        self.logdet = logdet

    # --------------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self.s.initialized and self.b.initialized

    def _require_initialized(self, op: str) -> None:
        if not self.initialized:
            raise RuntimeError(
                f"ActNorm.{op} called before initialization; run forward on a "
                "batch first to set the scale and bias"
            )

    def _check_channels(self, X: jnp.ndarray, name: str) -> None:
        check_ndim(X, name)
        if X.shape[-2] != self.k:
            raise ValueError(
                f"ActNorm expects {self.k} channels, got {name} with shape "
                f"{X.shape}"
            )

    # --------------------------------------------------------------------------

    def forward(self, X: jnp.ndarray):
        self._check_channels(X, "X")
        axes = non_channel_axes(X)

        if not self.initialized:
            mu = jnp.mean(X, axis=axes)
            sigma_sqr = jnp.var(X, axis=axes, ddof=1)
            self.s.data = 1.0 / jnp.sqrt(sigma_sqr)
            self.b.data = -mu / jnp.sqrt(sigma_sqr)
            logger.debug("ActNorm initialized from batch of shape %s", X.shape)

        Y = X * channel_view(self.s.data, X.ndim) + channel_view(
            self.b.data, X.ndim
        )
        if self.logdet:
            return Y, logdet_scale_forward(self.s.data, spatial_size(X))
        return Y

    # --------------------------------------------------------------------------

    def inverse(self, Y: jnp.ndarray) -> jnp.ndarray:
        self._require_initialized("inverse")
        self._check_channels(Y, "Y")
        s = channel_view(self.s.data, Y.ndim)
        b = channel_view(self.b.data, Y.ndim)
        return (Y - b) / s

    # --------------------------------------------------------------------------

    def backward(self, dY: jnp.ndarray, Y: jnp.ndarray):
        self._require_initialized("backward")
        X = self.inverse(Y)
        check_like(dY, Y, "dY", "Y")
        axes = non_channel_axes(Y)

        dX = dY * channel_view(self.s.data, Y.ndim)
        ds = jnp.sum(dY * X, axis=axes)
        if self.logdet:
            ds = ds - logdet_scale_backward(self.s.data, spatial_size(Y))
        db = jnp.sum(dY, axis=axes)

        self.s.grad = ds
        self.b.grad = db
        return dX, X

    # --------------------------------------------------------------------------

    def reset(self) -> None:
        """Forget scale and bias; the next forward call re-initializes them."""
        self.s.data = None
        self.b.data = None

    def get_params(self) -> List[Parameter]:
        return [self.s, self.b]
