"""
Basic affine coupling layer (Dinh et al., 2017) with a residual conditioner.

The input is given as two tensors ``(Xa, Xb)``. ``Xa`` passes through
unchanged and conditions an affine transform of ``Xb``::

    (log S, T) = split(ResidualBlock(Xa))
    S = sigmoid(log S)
    Ya = Xa
    Yb = S * Xb + T
"""

from typing import List, Optional, Sequence

import jax
import jax.numpy as jnp

from ..parameter import Parameter
from ..utils.tensors import (
    resolve_key,
    sigmoid,
    sigmoid_grad,
    sum_log_abs,
    tensor_cat,
    tensor_split,
)
from .base import NeuralNetLayer
from .residual_block import ResidualBlock

# ==============================================================================
# CouplingLayerBasic
# ==============================================================================


class CouplingLayerBasic(NeuralNetLayer):
    """Pairwise affine coupling layer.

    Parameters
    ----------
    spatial_shape : Sequence[int]
        ``(nx, ny)`` or ``(nx, ny, nz)``.
    n_in : int
        Channels of each of the two input tensors.
    n_hidden : int
        Hidden channels of the residual conditioner.
    logdet : bool
        If True, ``forward`` also returns the log-determinant, averaged over
        the batch.
    key : jax.Array, optional
        PRNG key for the conditioner initialization.
    dtype : jnp.dtype
        Parameter dtype.
    **conv_kwargs
        Convolution settings of the conditioner; see ``ConvConfig``.

    Examples
    --------
    >>> CL = CouplingLayerBasic((16, 16), 2, 8, logdet=True)
    >>> Ya, Yb, logdet = CL.forward(Xa, Xb)
    >>> Xa_, Xb_ = CL.inverse(Ya, Yb)
    >>> dXa, dXb, Xa_, Xb_ = CL.backward(dYa, dYb, Ya, Yb)
    """

    def __init__(
        self,
        spatial_shape: Sequence[int],
        n_in: int,
        n_hidden: int,
        *,
        logdet: bool = False,
        key: Optional[jax.Array] = None,
        dtype=jnp.float32,
        **conv_kwargs,
    ):
        self.RB = ResidualBlock(
            spatial_shape,
            n_in,
            n_hidden,
            key=resolve_key(key),
            dtype=dtype,
            **conv_kwargs,
        )
        self.logdet = logdet

    def _scale_and_shift(self, Xa: jnp.ndarray):
        logS, T = tensor_split(self.RB.forward(Xa))
        return sigmoid(logS), T

    # --------------------------------------------------------------------------

    def forward(self, Xa: jnp.ndarray, Xb: jnp.ndarray):
        S, T = self._scale_and_shift(Xa)
        Yb = S * Xb + T
        if self.logdet:
            return Xa, Yb, sum_log_abs(S) / Xb.shape[-1]
        return Xa, Yb

    def inverse(self, Ya: jnp.ndarray, Yb: jnp.ndarray):
        S, T = self._scale_and_shift(Ya)
        return Ya, (Yb - T) / S

    # --------------------------------------------------------------------------

    def backward(
        self,
        dYa: jnp.ndarray,
        dYb: jnp.ndarray,
        Ya: jnp.ndarray,
        Yb: jnp.ndarray,
    ):
        """Return ``(dXa, dXb, Xa, Xb)`` and set the conditioner gradients."""
        Xa = Ya
        S, T = self._scale_and_shift(Xa)
        Xb = (Yb - T) / S

        dT = dYb
        dS = dYb * Xb
        if self.logdet:
            dS = dS - 1.0 / (S * Xb.shape[-1])
        dXb = dYb * S
        dlogS = sigmoid_grad(dS, S)
        dXa = self.RB.backward(tensor_cat(dlogS, dT), Xa) + dYa
        return dXa, dXb, Xa, Xb

    # --------------------------------------------------------------------------

    def get_params(self) -> List[Parameter]:
        return self.RB.get_params()
