"""
Orthogonal 1x1 convolution built from Householder reflections.

The operator mixes channels at every pixel with the orthogonal matrix
``C = H1 H2 H3``, where ``Hi = I - 2 vi vi^T / (vi^T vi)``. Its inverse is
``C^T`` and its log-determinant is zero, so it can be inserted anywhere in
an invertible network as a learned channel permutation.

Both directions have a paired backward pass:

- ``backward(dY, Y)``: adjoint of ``forward``; returns ``(dX, X)``.
- ``inverse_backward(dX, X)``: adjoint of ``inverse``; returns ``(dY, Y)``.
"""

from typing import List, Optional

import jax
import jax.numpy as jnp

from ..parameter import Parameter
from ..utils.tensors import check_ndim, glorot_uniform, resolve_key
from .base import InvertibleLayer

# ------------------------------------------------------------------------------
# Householder helpers
# ------------------------------------------------------------------------------


def _householder(x: jnp.ndarray, v: jnp.ndarray) -> jnp.ndarray:
    """Reflect every channel vector of ``x`` across the hyperplane ``v^T x = 0``."""
    a = jnp.einsum("...cn,c->...n", x, v)
    return x - (2.0 / jnp.dot(v, v)) * v[:, None] * a[..., None, :]


def _householder_grad(
    x: jnp.ndarray, dy: jnp.ndarray, v: jnp.ndarray
) -> jnp.ndarray:
    """Gradient of ``<dy, H(v) x>`` with respect to ``v``."""
    n = jnp.dot(v, v)
    a = jnp.einsum("...cn,c->...n", x, v)
    b = jnp.einsum("...cn,c->...n", dy, v)
    outer = jnp.einsum("...cn,...n->c", x, b) + jnp.einsum(
        "...cn,...n->c", dy, a
    )
    return -2.0 * outer / n + 4.0 * jnp.sum(a * b) * v / n**2


# ==============================================================================
# Conv1x1
# ==============================================================================


class Conv1x1(InvertibleLayer):
    """Orthogonal channel-mixing layer.

    Parameters
    ----------
    k : int
        Number of channels.
    key : jax.Array, optional
        PRNG key for the reflection vectors.
    dtype : jnp.dtype
        Parameter dtype.

    Examples
    --------
    >>> C = Conv1x1(4)
    >>> Y = C.forward(X)
    >>> X_ = C.inverse(Y)
    >>> dX, X_ = C.backward(dY, Y)
    >>> dY_, Y_ = C.inverse_backward(dX, X)
    """

    def __init__(
        self, k: int, *, key: Optional[jax.Array] = None, dtype=jnp.float32
    ):
        self.k = k
        key1, key2, key3 = jax.random.split(resolve_key(key), 3)
        self.v1 = Parameter(glorot_uniform(key1, (k,), dtype))
        self.v2 = Parameter(glorot_uniform(key2, (k,), dtype))
        self.v3 = Parameter(glorot_uniform(key3, (k,), dtype))

    def _check_channels(self, X: jnp.ndarray, name: str) -> None:
        check_ndim(X, name)
        if X.shape[-2] != self.k:
            raise ValueError(
                f"Conv1x1 expects {self.k} channels, got {name} with shape "
                f"{X.shape}"
            )

    # --------------------------------------------------------------------------

    def forward(self, X: jnp.ndarray) -> jnp.ndarray:
        self._check_channels(X, "X")
        X = _householder(X, self.v3.data)
        X = _householder(X, self.v2.data)
        return _householder(X, self.v1.data)

    def inverse(self, Y: jnp.ndarray) -> jnp.ndarray:
        self._check_channels(Y, "Y")
        Y = _householder(Y, self.v1.data)
        Y = _householder(Y, self.v2.data)
        return _householder(Y, self.v3.data)

    # --------------------------------------------------------------------------

    def backward(self, dY: jnp.ndarray, Y: jnp.ndarray):
        """Adjoint of ``forward``: returns ``(dX, X)`` and sets gradients."""
        X = self.inverse(Y)
        Z3 = _householder(X, self.v3.data)
        Z2 = _householder(Z3, self.v2.data)

        self.v1.grad = _householder_grad(Z2, dY, self.v1.data)
        dZ2 = _householder(dY, self.v1.data)
        self.v2.grad = _householder_grad(Z3, dZ2, self.v2.data)
        dZ3 = _householder(dZ2, self.v2.data)
        self.v3.grad = _householder_grad(X, dZ3, self.v3.data)
        dX = _householder(dZ3, self.v3.data)
        return dX, X

    def inverse_backward(self, dX: jnp.ndarray, X: jnp.ndarray):
        """Adjoint of ``inverse``: returns ``(dY, Y)`` and sets gradients."""
        Y = self.forward(X)
        W1 = _householder(Y, self.v1.data)
        W2 = _householder(W1, self.v2.data)

        self.v3.grad = _householder_grad(W2, dX, self.v3.data)
        dW2 = _householder(dX, self.v3.data)
        self.v2.grad = _householder_grad(W1, dW2, self.v2.data)
        dW1 = _householder(dW2, self.v2.data)
        self.v1.grad = _householder_grad(Y, dW1, self.v1.data)
        dY = _householder(dW1, self.v1.data)
        return dY, Y

    # --------------------------------------------------------------------------

    def get_params(self) -> List[Parameter]:
        return [self.v1, self.v2, self.v3]
