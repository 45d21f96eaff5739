"""
Residual block from Putzky & Welling (2019), used as a conditioner network.

The block is not invertible. It consists of three operators:

1. a convolution with bias followed by a ReLU,
2. a shape-preserving convolution with bias and an identity skip connection
   followed by a ReLU,
3. the adjoint (transpose) of a convolution, bringing the data back to the
   input resolution, followed by a ReLU.

Backpropagation recomputes the forward states instead of storing them.

Classes
-------
ResidualBlock
    Unconditional block mapping ``n_in`` channels to ``2 * n_in`` channels.
"""

from typing import List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp

from ..config import ConvConfig
from ..parameter import Parameter
from ..utils.convolution import (
    ConvDims,
    conv,
    conv_data_adjoint,
    conv_filter_grad,
)
from ..utils.tensors import (
    channel_view,
    check_ndim,
    glorot_uniform,
    non_channel_axes,
    relu,
    relu_grad,
    resolve_key,
)
from .base import NeuralNetLayer

# ==============================================================================
# Shared three-stage convolution stack
# ==============================================================================


class ConvStack(NeuralNetLayer):
    """Parameters and passes of the three convolution stages.

    Subclasses decide what enters the first convolution (``X1``) and how many
    channels leave the third operator.

    Parameters
    ----------
    spatial_shape : Sequence[int]
        Spatial shape of the block input.
    n_conv_in : int
        Channels entering the first convolution.
    n_out : int
        Channels produced by the third operator.
    n_hidden : int
        Hidden channels.
    conv_config : ConvConfig
        Kernel, padding and stride settings.
    key : jax.Array
        PRNG key for the Glorot initialization of the kernels.
    dtype : jnp.dtype
        Parameter dtype.
    """

    def __init__(
        self,
        spatial_shape: Sequence[int],
        n_conv_in: int,
        n_out: int,
        n_hidden: int,
        conv_config: ConvConfig,
        key: jax.Array,
        dtype=jnp.float32,
    ):
        self.conv_config = conv_config
        self.cdims1, self.cdims2, self.cdims3 = conv_config.conv_dims(
            tuple(spatial_shape), n_conv_in, n_out, n_hidden
        )

        key1, key2, key3 = jax.random.split(key, 3)
        self.W1 = Parameter(glorot_uniform(key1, self.cdims1.kernel_shape, dtype))
        self.W2 = Parameter(glorot_uniform(key2, self.cdims2.kernel_shape, dtype))
        self.W3 = Parameter(glorot_uniform(key3, self.cdims3.kernel_shape, dtype))
        self.b1 = Parameter(jnp.zeros(n_hidden, dtype=dtype))
        self.b2 = Parameter(jnp.zeros(n_hidden, dtype=dtype))

    # --------------------------------------------------------------------------

    def _stages_forward(
        self, X1: jnp.ndarray
    ) -> Tuple[jnp.ndarray, ...]:
        """Run the three stages on ``X1``.

        Returns
        -------
        tuple
            ``(Y1, Y2, Y3, X2, X3)``: the pre-activations of every stage and
            the inputs of the second and third stage. ``ReLU(Y3)`` is the
            block output.
        """
        nd = X1.ndim
        Y1 = conv(X1, self.W1.data, self.cdims1) + channel_view(self.b1.data, nd)
        X2 = relu(Y1)

        Y2 = (
            X2
            + conv(X2, self.W2.data, self.cdims2)
            + channel_view(self.b2.data, nd)
        )
        X3 = relu(Y2)

        Y3 = conv_data_adjoint(X3, self.W3.data, self.cdims3)
        return Y1, Y2, Y3, X2, X3

    # --------------------------------------------------------------------------

    def _stages_backward(
        self, dX4: jnp.ndarray, X1: jnp.ndarray
    ) -> jnp.ndarray:
        """Backpropagate the output gradient ``dX4`` to ``X1``.

        Sets the gradients of ``W1``, ``W2``, ``W3``, ``b1`` and ``b2``.
        """
        Y1, Y2, Y3, X2, X3 = self._stages_forward(X1)
        axes = non_channel_axes(X1)

        dY3 = relu_grad(dX4, Y3)
        dX3 = conv(dY3, self.W3.data, self.cdims3)
        dW3 = conv_filter_grad(dY3, X3, self.cdims3)

        dY2 = relu_grad(dX3, Y2)
        dX2 = conv_data_adjoint(dY2, self.W2.data, self.cdims2) + dY2
        dW2 = conv_filter_grad(X2, dY2, self.cdims2)
        db2 = jnp.sum(dY2, axis=axes)

        dY1 = relu_grad(dX2, Y1)
        dX1 = conv_data_adjoint(dY1, self.W1.data, self.cdims1)
        dW1 = conv_filter_grad(X1, dY1, self.cdims1)
        db1 = jnp.sum(dY1, axis=axes)

        self.W1.grad = dW1
        self.W2.grad = dW2
        self.W3.grad = dW3
        self.b1.grad = db1
        self.b2.grad = db2
        return dX1


# ==============================================================================
# ResidualBlock
# ==============================================================================


class ResidualBlock(ConvStack):
    """Residual block with ``2 * n_in`` output channels.

    The doubled output is used by coupling layers as the concatenation of a
    log-scale and a translation for the transformed half.

    Parameters
    ----------
    spatial_shape : Sequence[int]
        ``(nx, ny)`` or ``(nx, ny, nz)``.
    n_in : int
        Number of input channels.
    n_hidden : int
        Number of hidden channels.
    key : jax.Array, optional
        PRNG key for the initialization.
    dtype : jnp.dtype
        Parameter dtype.
    **conv_kwargs
        ``k1``, ``k2``, ``p1``, ``p2``, ``s1``, ``s2``; see ``ConvConfig``.

    Examples
    --------
    >>> RB = ResidualBlock((16, 16), 2, 8)
    >>> Y = RB.forward(X)            # X: (16, 16, 2, N), Y: (16, 16, 4, N)
    >>> dX = RB.backward(dY, X)
    """

    def __init__(
        self,
        spatial_shape: Sequence[int],
        n_in: int,
        n_hidden: int,
        *,
        key: Optional[jax.Array] = None,
        dtype=jnp.float32,
        **conv_kwargs,
    ):
        self.n_in = n_in
        self.n_hidden = n_hidden
        super().__init__(
            spatial_shape,
            n_in,
            2 * n_in,
            n_hidden,
            ConvConfig(**conv_kwargs),
            resolve_key(key),
            dtype,
        )

    # --------------------------------------------------------------------------

    def forward(self, X: jnp.ndarray) -> jnp.ndarray:
        check_ndim(X, "X")
        self.cdims1.check_input(X, "X")
        return relu(self._stages_forward(X)[2])

    def backward(self, dY: jnp.ndarray, X: jnp.ndarray) -> jnp.ndarray:
        check_ndim(X, "X")
        self.cdims1.check_input(X, "X")
        self.cdims3.check_input(dY, "dY")
        return self._stages_backward(dY, X)

    # --------------------------------------------------------------------------

    def get_params(self) -> List[Parameter]:
        return [self.W1, self.W2, self.W3, self.b1, self.b2]
