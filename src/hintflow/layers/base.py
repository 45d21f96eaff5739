"""
Base classes for network layers.

Convention
----------
Every layer owns its ``Parameter`` objects and exposes them through
``get_params`` as live references. Invertible layers implement three
mutually consistent maps:

- ``forward(X)``: returns ``Y``, or ``(Y, logdet)`` when the layer was
  created with ``logdet=True``.
- ``inverse(Y)``: returns ``X``.
- ``backward(dY, Y)``: recomputes ``X`` from ``Y``, returns ``(dX, X)`` and
  overwrites the gradients of the layer's parameters.

Classes
-------
NeuralNetLayer
    Parameter bookkeeping common to every layer.
InvertibleLayer
    Abstract forward/inverse/backward interface.
"""

from abc import ABC, abstractmethod
from typing import List

from ..parameter import Parameter

# ==============================================================================
# NeuralNetLayer
# ==============================================================================


class NeuralNetLayer(ABC):
    """Layer owning a fixed, ordered set of parameters."""

    @abstractmethod
    def get_params(self) -> List[Parameter]:
        """Ordered list of the parameters owned by this layer."""

    def clear_grad(self) -> None:
        """Set the gradient of every owned parameter to ``None``."""
        for p in self.get_params():
            p.grad = None

    def __call__(self, *args, **kwargs):
        return self.forward(*args, **kwargs)


# ==============================================================================
# InvertibleLayer
# ==============================================================================


class InvertibleLayer(NeuralNetLayer):
    """Bijective layer with a hand-written backward pass."""

    @abstractmethod
    def forward(self, X):
        """Map input ``X`` to output ``Y`` (and optionally its logdet)."""

    @abstractmethod
    def inverse(self, Y):
        """Recover the input ``X`` from the output ``Y``."""

    @abstractmethod
    def backward(self, dY, Y):
        """Backpropagate ``dY``; returns ``(dX, X)`` and sets gradients."""
