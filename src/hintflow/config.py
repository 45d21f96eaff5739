"""Convolution configuration shared by the residual blocks using Pydantic."""

from typing import Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .utils.convolution import ConvDims

# ==============================================================================
# Convolution Configuration
# ==============================================================================


class ConvConfig(BaseModel):
    """
    Kernel, padding and stride settings of a three-stage residual block.

    The first and third operators use ``k1``/``p1``/``s1``; the second
    operator uses ``k2``/``p2``/``s2`` and is wrapped by an identity skip
    connection, so it has to preserve the shape of its input.

    Parameters
    ----------
    k1, k2 : int
        Kernel sizes of the first/third and of the second convolution.
    p1, p2 : int
        Zero padding of the first/third and of the second convolution.
    s1, s2 : int
        Strides of the first/third and of the second convolution.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    k1: int = Field(3, ge=1, description="Kernel of first/third convolution")
    k2: int = Field(3, ge=1, description="Kernel of second convolution")
    p1: int = Field(1, ge=0, description="Padding of first/third convolution")
    p2: int = Field(1, ge=0, description="Padding of second convolution")
    s1: int = Field(1, ge=1, description="Stride of first/third convolution")
    s2: int = Field(1, ge=1, description="Stride of second convolution")

    # --------------------------------------------------------------------------
    # Validation Methods
    # --------------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_residual_shape(self) -> "ConvConfig":
        """The skip connection requires a shape-preserving second operator."""
        if self.s2 != 1 or 2 * self.p2 != self.k2 - 1:
            raise ValueError(
                "The second convolution must preserve its input shape "
                f"(s2 == 1 and 2*p2 == k2 - 1), got k2={self.k2}, "
                f"p2={self.p2}, s2={self.s2}"
            )
        return self

    # --------------------------------------------------------------------------
    # Shape descriptors
    # --------------------------------------------------------------------------

    def conv_dims(
        self,
        spatial: Tuple[int, ...],
        n_in: int,
        n_out: int,
        n_hidden: int,
    ) -> Tuple[ConvDims, ConvDims, ConvDims]:
        """Build the three convolution descriptors of a residual block.

        Parameters
        ----------
        spatial : Tuple[int, ...]
            Spatial shape of the block input.
        n_in : int
            Channels entering the first convolution.
        n_out : int
            Channels produced by the third (transposed) operator.
        n_hidden : int
            Hidden channels.
        """
        spatial = tuple(spatial)
        cdims1 = ConvDims(spatial, n_in, n_hidden, self.k1, self.s1, self.p1)
        cdims2 = ConvDims(
            cdims1.output_spatial, n_hidden, n_hidden, self.k2, self.s2, self.p2
        )
        # The third operator is applied as the adjoint of a convolution
        # mapping the block output shape to the hidden shape.
        cdims3 = ConvDims(spatial, n_out, n_hidden, self.k1, self.s1, self.p1)
        return cdims1, cdims2, cdims3
