"""
Affine scaling layer with one scale and bias per pixel and channel.
"""

import warnings
from typing import List, Optional

import jax
import jax.numpy as jnp

from ..parameter import Parameter
from ..utils.tensors import (
    check_like,
    glorot_uniform,
    logdet_scale_backward,
    logdet_scale_forward,
    resolve_key,
)
from .base import InvertibleLayer

# ==============================================================================
# AffineLayer
# ==============================================================================


class AffineLayer(InvertibleLayer):
    """Element-wise affine transform ``Y = X * s + b``.

    ``s`` and ``b`` have the shape of a single sample, ``(nx, ny, nc)`` or
    ``(nx, ny, nz, nc)``, and are shared across the batch axis.

    Parameters
    ----------
    *shape : int
        Spatial sizes followed by the number of channels.
    logdet : bool
        If True, ``forward`` also returns ``sum(log|s|)``.
    eps : float
        Offset added to ``s`` in the denominator of ``inverse``. The default
        ``0.0`` gives the exact algebraic inverse.
    random_eps : bool
        If True, the offset is ``eps * N(0, 1)`` drawn anew at every inverse
        call, which makes ``inverse`` non-deterministic.
    key : jax.Array, optional
        PRNG key for the initialization of ``s`` and the random offsets.
    dtype : jnp.dtype
        Parameter dtype.
    """

    def __init__(
        self,
        *shape: int,
        logdet: bool = False,
        eps: float = 0.0,
        random_eps: bool = False,
        key: Optional[jax.Array] = None,
        dtype=jnp.float32,
    ):
        if len(shape) not in (3, 4):
            raise ValueError(
                "AffineLayer expects (nx, ny, nc) or (nx, ny, nz, nc), "
                f"got {shape}"
            )
        if eps < 0:
            raise ValueError(f"eps must be non-negative, got {eps}")
        if random_eps:
            warnings.warn(
                "AffineLayer with random_eps=True has a non-deterministic "
                "inverse that is not an exact algebraic inverse.",
                UserWarning,
            )

        key, self._key = jax.random.split(resolve_key(key))
        self.shape = tuple(shape)
        self.s = Parameter(glorot_uniform(key, self.shape, dtype))
        self.b = Parameter(jnp.zeros(self.shape, dtype=dtype))
        self.logdet = logdet
        self.eps = eps
        self.random_eps = random_eps

    # --------------------------------------------------------------------------

    def _check_shape(self, X: jnp.ndarray, name: str) -> None:
        if tuple(X.shape[:-1]) != self.shape:
            raise ValueError(
                f"AffineLayer expects {name} of shape {self.shape + ('N',)}, "
                f"got {X.shape}"
            )

    def _denominator(self) -> jnp.ndarray:
        s = self.s.data
        if self.eps == 0.0:
            return s
        if self.random_eps:
            self._key, key = jax.random.split(self._key)
            return s + self.eps * jax.random.normal(key, s.shape, dtype=s.dtype)
        return s + self.eps

    # --------------------------------------------------------------------------

    def forward(self, X: jnp.ndarray):
        self._check_shape(X, "X")
        Y = X * self.s.data[..., None] + self.b.data[..., None]
        if self.logdet:
            return Y, logdet_scale_forward(self.s.data)
        return Y

    def inverse(self, Y: jnp.ndarray) -> jnp.ndarray:
        self._check_shape(Y, "Y")
        return (Y - self.b.data[..., None]) / self._denominator()[..., None]

    def backward(self, dY: jnp.ndarray, Y: jnp.ndarray):
        X = self.inverse(Y)
        check_like(dY, Y, "dY", "Y")
        dX = dY * self.s.data[..., None]
        ds = jnp.sum(dY * X, axis=-1)
        if self.logdet:
            ds = ds - logdet_scale_backward(self.s.data)
        db = jnp.sum(dY, axis=-1)

        self.s.grad = ds
        self.b.grad = db
        return dX, X

    # --------------------------------------------------------------------------

    def get_params(self) -> List[Parameter]:
        return [self.s, self.b]
