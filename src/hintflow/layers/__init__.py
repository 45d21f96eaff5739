"""
Invertible network layers with hand-written backward passes.

Layers
------
ActNorm
    Activation normalization with data-dependent initialization.
AffineLayer
    Per-pixel, per-channel affine transform.
Conv1x1
    Orthogonal channel mixing from Householder reflections.
ResidualBlock
    Non-invertible residual conditioner network.
CouplingLayerBasic
    Affine coupling of two tensors.
CouplingLayerHINT
    Recursive hierarchical coupling layer.
"""

# Common layer interface.
from .base import NeuralNetLayer, InvertibleLayer

# Normalization and affine layers.
from .actnorm import ActNorm
from .affine import AffineLayer

# Channel permutation.
from .conv1x1 import Conv1x1

# Conditioner network.
from .residual_block import ResidualBlock

# Coupling layers.
from .coupling_basic import CouplingLayerBasic
from .coupling_hint import CouplingLayerHINT, get_depth

__all__ = [
    "NeuralNetLayer",
    "InvertibleLayer",
    "ActNorm",
    "AffineLayer",
    "Conv1x1",
    "ResidualBlock",
    "CouplingLayerBasic",
    "CouplingLayerHINT",
    "get_depth",
]
