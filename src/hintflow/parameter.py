"""
Learnable parameter cells and the parameter/gradient protocol.

A ``Parameter`` is a mutable cell holding an optional value (``data``) and an
optional gradient (``grad``). Layers own their parameters and expose them as
live references through ``get_params``; an external optimizer mutates
``data`` in place, while ``backward`` calls overwrite ``grad``.

Functions
---------
get_params
    Ordered list of the parameters owned by a layer.
clear_grad
    Set every owned gradient to ``None``.
reset
    Forget data-dependent initialization (ActNorm layers only).
"""

from typing import Iterable, List, Optional, Union

import jax.numpy as jnp

# ------------------------------------------------------------------------------


class Parameter:
    """Mutable cell holding a value and its gradient.

    Parameters
    ----------
    data : jnp.ndarray, optional
        Current value. ``None`` means uninitialized (used by layers with
        data-dependent initialization).
    grad : jnp.ndarray, optional
        Gradient produced by the last ``backward`` call.

    Notes
    -----
    When both are set, ``grad`` must have the same shape as ``data``;
    assigning a mismatched gradient raises ``ValueError``.
    """

    __slots__ = ("data", "_grad")

    def __init__(
        self,
        data: Optional[jnp.ndarray] = None,
        grad: Optional[jnp.ndarray] = None,
    ):
        self.data = data
        self._grad = None
        self.grad = grad

    @property
    def grad(self) -> Optional[jnp.ndarray]:
        return self._grad

    @grad.setter
    def grad(self, value: Optional[jnp.ndarray]) -> None:
        if (
            value is not None
            and self.data is not None
            and jnp.shape(value) != jnp.shape(self.data)
        ):
            raise ValueError(
                f"Gradient shape {jnp.shape(value)} does not match parameter "
                f"shape {jnp.shape(self.data)}"
            )
        self._grad = value

    @property
    def initialized(self) -> bool:
        return self.data is not None

    def __repr__(self) -> str:
        shape = None if self.data is None else tuple(jnp.shape(self.data))
        return f"Parameter(shape={shape}, has_grad={self._grad is not None})"


# ------------------------------------------------------------------------------


def get_params(layer) -> List[Parameter]:
    """Return the ordered list of parameters owned by ``layer``.

    Each entry is a reference to the layer's own parameter; modifying the
    returned parameters modifies the layer.
    """
    return layer.get_params()


def clear_grad(layer) -> None:
    """Set the gradient of every parameter owned by ``layer`` to ``None``."""
    layer.clear_grad()


def reset(layers: Union[object, Iterable]) -> None:
    """Reset data-dependent initialization of one or several ActNorm layers.

    Parameters
    ----------
    layers : ActNorm or iterable of ActNorm
        Layers whose scale and bias are set back to ``None``; they are
        re-initialized from the statistics of the next forward batch.
    """
    if hasattr(layers, "reset"):
        layers.reset()
        return
    for layer in layers:
        layer.reset()
