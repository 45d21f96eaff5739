"""
Conditional residual block from Putzky & Welling (2019).

A (non-invertible) residual block whose input ``X`` is augmented with an
auxiliary tensor ``D``. ``D`` is first projected onto the shape of ``X`` by a
dense layer with bias and a ReLU, concatenated with ``X`` along the channel
axis, and the result runs through the three convolution stages of
``ResidualBlock``. ``D`` itself is passed through unchanged.
"""

from math import prod
from typing import List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp

from ..config import ConvConfig
from ..layers.residual_block import ConvStack
from ..parameter import Parameter
from ..utils.convolution import check_shape
from ..utils.tensors import (
    check_like,
    check_ndim,
    glorot_uniform,
    relu,
    relu_grad,
    resolve_key,
    tensor_cat,
    tensor_split,
)

# ==============================================================================
# ConditionalResidualBlock
# ==============================================================================


class ConditionalResidualBlock(ConvStack):
    """Residual block conditioned on auxiliary data.

    Parameters
    ----------
    x_shape : Sequence[int]
        Shape of one sample of ``X``: ``(nx1, nx2, nx_in)`` or
        ``(nx1, nx2, nx3, nx_in)``.
    d_shape : Sequence[int]
        Shape of one sample of ``D``: spatial sizes followed by ``ny_in``. The
        number of spatial axes may differ from ``X``'s.
    n_hidden : int
        Number of hidden channels.
    key : jax.Array, optional
        PRNG key for the initialization.
    dtype : jnp.dtype
        Parameter dtype.
    **conv_kwargs
        ``k1``, ``k2``, ``p1``, ``p2``, ``s1``, ``s2``; see ``ConvConfig``.

    Attributes
    ----------
    W0, b0 : Parameter
        Dense projection of ``vec(D)`` onto ``vec(X)``.
    W1, W2, W3, b1, b2 : Parameter
        Convolution kernels and biases.
    cdims1, cdims2, cdims3 : ConvDims
        Shape descriptors checked at every call.

    Examples
    --------
    >>> RB = ConditionalResidualBlock((8, 8, 2), (4, 4, 3), 16)
    >>> Y, D = RB.forward(X, D)
    >>> dX, dD = RB.backward(dY, None, X, D)
    """

    def __init__(
        self,
        x_shape: Sequence[int],
        d_shape: Sequence[int],
        n_hidden: int,
        *,
        key: Optional[jax.Array] = None,
        dtype=jnp.float32,
        **conv_kwargs,
    ):
        self.x_shape = tuple(x_shape)
        self.d_shape = tuple(d_shape)
        self.n_hidden = n_hidden
        nx_in = self.x_shape[-1]

        key0, key = jax.random.split(resolve_key(key))
        super().__init__(
            self.x_shape[:-1],
            2 * nx_in,
            nx_in,
            n_hidden,
            ConvConfig(**conv_kwargs),
            key,
            dtype,
        )
        self.W0 = Parameter(
            glorot_uniform(key0, (prod(self.x_shape), prod(self.d_shape)), dtype)
        )
        self.b0 = Parameter(jnp.zeros(prod(self.x_shape), dtype=dtype))

    # --------------------------------------------------------------------------

    def _check_inputs(self, X: jnp.ndarray, D: jnp.ndarray) -> None:
        check_ndim(X, "X")
        check_shape(X, self.x_shape, "X")
        check_shape(D, self.d_shape, "D")
        if X.shape[-1] != D.shape[-1]:
            raise ValueError(
                f"X and D must have the same batch size, got {X.shape[-1]} "
                f"and {D.shape[-1]}"
            )

    def _dense_forward(
        self, X0: jnp.ndarray, D: jnp.ndarray
    ) -> Tuple[jnp.ndarray, jnp.ndarray]:
        batchsize = X0.shape[-1]
        Y0 = self.W0.data @ jnp.reshape(D, (-1, batchsize)) + self.b0.data[:, None]
        Y0 = jnp.reshape(Y0, X0.shape)
        X1 = tensor_cat(X0, relu(Y0))
        return Y0, X1

    # --------------------------------------------------------------------------

    def forward(self, X: jnp.ndarray, D: jnp.ndarray):
        """Return ``(Y, D)``."""
        self._check_inputs(X, D)
        _, X1 = self._dense_forward(X, D)
        Y3 = self._stages_forward(X1)[2]
        return relu(Y3), D

    # --------------------------------------------------------------------------

    def backward(
        self,
        dY: jnp.ndarray,
        dD: Optional[jnp.ndarray],
        X: jnp.ndarray,
        D: jnp.ndarray,
    ):
        """Backpropagate ``(dY, dD)`` and set the gradients of all parameters.

        Parameters
        ----------
        dY : jnp.ndarray
            Gradient with respect to the block output.
        dD : jnp.ndarray or None
            Gradient with respect to the passed-through ``D``; ``None`` means
            zero.
        X, D : jnp.ndarray
            Block inputs; intermediate states are recomputed from them.

        Returns
        -------
        dX : jnp.ndarray
            Gradient with respect to ``X``.
        dD : jnp.ndarray
            Gradient with respect to ``D``.
        """
        self._check_inputs(X, D)
        check_shape(dY, self.x_shape, "dY")
        check_like(dY, X, "dY", "X")
        if dD is not None:
            check_like(dD, D, "dD", "D")
        batchsize = X.shape[-1]

        Y0, X1 = self._dense_forward(X, D)
        dX1 = self._stages_backward(dY, X1)

        dX0, dX0_ = tensor_split(dX1)
        dY0 = jnp.reshape(relu_grad(dX0_, Y0), (-1, batchsize))
        D_flat = jnp.reshape(D, (-1, batchsize))

        dD_dense = jnp.reshape(self.W0.data.T @ dY0, D.shape)
        self.W0.grad = dY0 @ D_flat.T
        self.b0.grad = jnp.sum(dY0, axis=1)

        if dD is not None:
            dD_dense = dD_dense + dD
        return dX0, dD_dense

    # --------------------------------------------------------------------------

    def get_params(self) -> List[Parameter]:
        return [self.W0, self.W1, self.W2, self.W3, self.b0, self.b1, self.b2]
