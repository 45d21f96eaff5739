"""
Layers conditioned on auxiliary data.
"""

from .residual_block import ConditionalResidualBlock

__all__ = ["ConditionalResidualBlock"]
