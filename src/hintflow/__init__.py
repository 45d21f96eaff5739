"""
hintflow: invertible layers for normalizing flows with manual backward passes.

Every invertible layer provides ``forward``, an exact ``inverse`` and a
closed-form ``backward`` that recomputes the layer input from its output
while backpropagating, so activations never have to be stored. The central
layer is the recursive HINT coupling layer.

Examples
--------
>>> import jax
>>> from hintflow import CouplingLayerHINT
>>> H = CouplingLayerHINT((16, 16), 8, 32, logdet=True)
>>> X = jax.random.normal(jax.random.PRNGKey(0), (16, 16, 8, 2))
>>> Y, logdet = H.forward(X)
>>> dX, X_ = H.backward(Y, Y)
"""

from .parameter import Parameter, get_params, clear_grad, reset
from .enums import PermuteMode
from .config import ConvConfig

from .layers import (
    NeuralNetLayer,
    InvertibleLayer,
    ActNorm,
    AffineLayer,
    Conv1x1,
    ResidualBlock,
    CouplingLayerBasic,
    CouplingLayerHINT,
    get_depth,
)
from .conditional_layers import ConditionalResidualBlock

from . import utils

__version__ = "0.1.0"

__all__ = [
    "Parameter",
    "get_params",
    "clear_grad",
    "reset",
    "PermuteMode",
    "ConvConfig",
    "NeuralNetLayer",
    "InvertibleLayer",
    "ActNorm",
    "AffineLayer",
    "Conv1x1",
    "ResidualBlock",
    "CouplingLayerBasic",
    "CouplingLayerHINT",
    "get_depth",
    "ConditionalResidualBlock",
    "utils",
]
