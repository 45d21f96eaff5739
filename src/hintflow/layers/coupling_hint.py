"""
Recursive HINT coupling layer (Kruse et al., 2020).

The input is split into two channel halves; each half is transformed by a
recursive call on half the channels, and the halves are combined by a
pairwise coupling layer. The recursion stops when a node has at most four
channels, so the layer is a binary tree of coupling layers whose depth is
fixed by the number of input channels::

            X (n)
           /     \\
      Xa (n/2)  Xb (n/2)
         |         |
      HINT(Xa)  HINT(Xb)
          \\       /
        coupling level 1
              |
              Y

All nodes of a recursion level share one coupling layer (and, if enabled,
one channel permutation). Levels are indexed by ``scale``: 1 is the
outermost level, ``depth`` the finest.

Functions
---------
get_depth
    Number of recursion levels for a channel count.

Classes
-------
CouplingLayerHINT
    Recursive invertible coupling layer.
"""

import logging
from typing import Callable, List, Optional, Sequence

import jax
import jax.numpy as jnp

from ..config import ConvConfig
from ..enums import PermuteMode
from ..parameter import Parameter
from ..utils.tensors import check_ndim, resolve_key, tensor_cat, tensor_split
from .base import InvertibleLayer, NeuralNetLayer
from .conv1x1 import Conv1x1
from .coupling_basic import CouplingLayerBasic

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------------------


def get_depth(n_in: int) -> int:
    """Number of recursion levels of a HINT layer with ``n_in`` channels.

    Halves the channel count while it exceeds 4 and counts the halvings,
    plus one for the finest level: ``get_depth(4) == 1``,
    ``get_depth(8) == 2``, ``get_depth(32) == 4``.
    """
    count = 0
    nc = n_in
    while nc > 4:
        nc /= 2
        count += 1
    return count + 1


# ------------------------------------------------------------------------------


def _accumulating(layer: NeuralNetLayer, call: Callable, *args):
    """Run ``call(*args)`` and add the gradients it sets to ``layer``'s
    previous gradients instead of overwriting them."""
    params = layer.get_params()
    previous = [p.grad for p in params]
    out = call(*args)
    for p, g in zip(params, previous):
        if g is not None:
            p.grad = g if p.grad is None else p.grad + g
    return out


# ==============================================================================
# CouplingLayerHINT
# ==============================================================================


class CouplingLayerHINT(InvertibleLayer):
    """Recursive HINT-style invertible coupling layer.

    Parameters
    ----------
    spatial_shape : Sequence[int]
        ``(nx, ny)`` for 2D or ``(nx, ny, nz)`` for 3D inputs.
    n_in : int
        Number of input channels; must be a power of two, at least 2.
    n_hidden : int
        Hidden channels of the residual conditioners.
    logdet : bool
        If True, ``forward`` also returns the log-determinant.
    permute : str or PermuteMode
        ``"none"``, ``"lower"``, ``"both"`` or ``"full"``.
    key : jax.Array, optional
        PRNG key for the initialization of all sub-layers.
    dtype : jnp.dtype
        Parameter dtype.
    **conv_kwargs
        ``k1``, ``k2``, ``p1``, ``p2``, ``s1``, ``s2`` of the conditioners.

    Attributes
    ----------
    CL : List[CouplingLayerBasic]
        Coupling layer of every level; ``CL[j]`` couples two halves of
        ``n_in / 2**(j + 1)`` channels.
    C : List[Optional[Conv1x1]]
        Channel permutation of every level, ``None`` where the permute mode
        does not use one.
    depth : int
        Number of recursion levels, ``get_depth(n_in)``.

    Examples
    --------
    >>> H = CouplingLayerHINT((16, 16), 8, 32, logdet=True, permute="lower")
    >>> Y, logdet = H.forward(X)
    >>> X_ = H.inverse(Y)
    >>> dX, X_ = H.backward(dY, Y)

    Notes
    -----
    The layer itself has no parameters; ``get_params`` returns the
    parameters of all coupling layers followed by those of the
    permutations.
    """

    def __init__(
        self,
        spatial_shape: Sequence[int],
        n_in: int,
        n_hidden: int,
        *,
        logdet: bool = False,
        permute="none",
        key: Optional[jax.Array] = None,
        dtype=jnp.float32,
        **conv_kwargs,
    ):
        if n_in < 2 or n_in & (n_in - 1) != 0:
            raise ValueError(
                "CouplingLayerHINT requires the number of input channels to "
                f"be a power of two (at least 2), got n_in={n_in}"
            )
        self.spatial_shape = tuple(spatial_shape)
        self.n_in = n_in
        self.n_hidden = n_hidden
        self.logdet = logdet
        self.permute = PermuteMode.parse(permute)
        self.depth = get_depth(n_in)
        conv_config = ConvConfig(**conv_kwargs)

        keys = jax.random.split(resolve_key(key), 2 * self.depth)
        self.CL = [
            CouplingLayerBasic(
                self.spatial_shape,
                n_in // 2 ** (j + 1),
                n_hidden,
                logdet=logdet,
                key=keys[j],
                dtype=dtype,
                **conv_config.model_dump(),
            )
            for j in range(self.depth)
        ]
        self.C = [
            self._make_permutation(j, keys[self.depth + j], dtype)
            for j in range(self.depth)
        ]
        logger.debug(
            "HINT layer with %d channels: depth %d, coupling channels %s, "
            "permute=%s",
            n_in,
            self.depth,
            [n_in // 2 ** (j + 1) for j in range(self.depth)],
            self.permute.value,
        )

    def _make_permutation(
        self, level: int, key: jax.Array, dtype
    ) -> Optional[Conv1x1]:
        if self.permute == PermuteMode.BOTH:
            return Conv1x1(self.n_in // 2**level, key=key, dtype=dtype)
        if self.permute == PermuteMode.LOWER:
            return Conv1x1(self.n_in // 2 ** (level + 1), key=key, dtype=dtype)
        if self.permute == PermuteMode.FULL and level == 0:
            return Conv1x1(self.n_in, key=key, dtype=dtype)
        return None

    # --------------------------------------------------------------------------

    def _check_input(self, X: jnp.ndarray, name: str) -> None:
        check_ndim(X, name)
        if X.ndim - 2 != len(self.spatial_shape):
            raise ValueError(
                f"CouplingLayerHINT was built for spatial shape "
                f"{self.spatial_shape}, got {name} with shape {X.shape}"
            )
        if X.shape[-2] != self.n_in:
            raise ValueError(
                f"CouplingLayerHINT expects {self.n_in} channels, got {name} "
                f"with shape {X.shape}"
            )

    def _permutes_outer(self, scale: int) -> bool:
        return self.permute == PermuteMode.BOTH or (
            self.permute == PermuteMode.FULL and scale == 1
        )

    # --------------------------------------------------------------------------
    # Forward
    # --------------------------------------------------------------------------

    def forward(self, X: jnp.ndarray):
        self._check_input(X, "X")
        Y, logdet = self._forward(X, 1)
        if self.logdet:
            return Y, logdet
        return Y

    def _forward(self, X: jnp.ndarray, scale: int):
        C = self.C[scale - 1]
        CL = self.CL[scale - 1]

        if self._permutes_outer(scale):
            X = C.forward(X)
        Xa, Xb = tensor_split(X)
        if self.permute == PermuteMode.LOWER:
            Xb = C.forward(Xb)

        if scale < self.depth:
            Ya, logdet1 = self._forward(Xa, scale + 1)
            Y_temp, logdet2 = self._forward(Xb, scale + 1)
            Yb, logdet3 = self._couple(CL, Xa, Y_temp)
            logdet = logdet1 + logdet2 + logdet3
        else:
            Ya = Xa
            Yb, logdet = self._couple(CL, Xa, Xb)

        Y = tensor_cat(Ya, Yb)
        if self.permute == PermuteMode.BOTH:
            Y = C.inverse(Y)
        return Y, logdet

    def _couple(self, CL: CouplingLayerBasic, Xa: jnp.ndarray, Xb: jnp.ndarray):
        out = CL.forward(Xa, Xb)
        if self.logdet:
            return out[1], out[2]
        return out[1], 0.0

    # --------------------------------------------------------------------------
    # Inverse
    # --------------------------------------------------------------------------

    def inverse(self, Y: jnp.ndarray) -> jnp.ndarray:
        self._check_input(Y, "Y")
        return self._inverse(Y, 1)

    def _inverse(self, Y: jnp.ndarray, scale: int) -> jnp.ndarray:
        C = self.C[scale - 1]
        CL = self.CL[scale - 1]

        if self.permute == PermuteMode.BOTH:
            Y = C.forward(Y)
        Ya, Yb = tensor_split(Y)

        if scale < self.depth:
            Xa = self._inverse(Ya, scale + 1)
            Xb = self._inverse(CL.inverse(Xa, Yb)[1], scale + 1)
        else:
            Xa = Ya
            Xb = CL.inverse(Ya, Yb)[1]

        if self.permute == PermuteMode.LOWER:
            Xb = C.inverse(Xb)
        X = tensor_cat(Xa, Xb)
        if self._permutes_outer(scale):
            X = C.inverse(X)
        return X

    # --------------------------------------------------------------------------
    # Backward
    # --------------------------------------------------------------------------

    def backward(self, dY: jnp.ndarray, Y: jnp.ndarray):
        """Return ``(dX, X)``.

        Overwrites the gradients of all coupling layers and permutations. A
        level shared by several nodes receives the sum of their
        contributions.
        """
        self._check_input(Y, "Y")
        self._check_input(dY, "dY")
        self.clear_grad()
        return self._backward(dY, Y, 1)

    def _backward(self, dY: jnp.ndarray, Y: jnp.ndarray, scale: int):
        C = self.C[scale - 1]
        CL = self.CL[scale - 1]

        if self.permute == PermuteMode.BOTH:
            dY, Y = _accumulating(C, C.inverse_backward, dY, Y)
        Ya, Yb = tensor_split(Y)
        dYa, dYb = tensor_split(dY)

        if scale < self.depth:
            dXa, Xa = self._backward(dYa, Ya, scale + 1)
            dXa_temp, dXb_temp, _, X_temp = _accumulating(
                CL, CL.backward, jnp.zeros_like(dXa), dYb, Xa, Yb
            )
            dXb, Xb = self._backward(dXb_temp, X_temp, scale + 1)
            dXa = dXa + dXa_temp
        else:
            Xa = Ya
            dXa_, dXb, _, Xb = _accumulating(
                CL, CL.backward, jnp.zeros_like(dYa), dYb, Ya, Yb
            )
            dXa = dYa + dXa_

        if self.permute == PermuteMode.LOWER:
            dXb, Xb = _accumulating(C, C.backward, dXb, Xb)
        dX = tensor_cat(dXa, dXb)
        X = tensor_cat(Xa, Xb)
        if self._permutes_outer(scale):
            dX, X = _accumulating(C, C.backward, dX, X)
        return dX, X

    # --------------------------------------------------------------------------

    def get_params(self) -> List[Parameter]:
        params = []
        for CL in self.CL:
            params.extend(CL.get_params())
        for C in self.C:
            if C is not None:
                params.extend(C.get_params())
        return params
