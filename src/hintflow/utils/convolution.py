"""
Convolutions and their adjoints for the ``(spatial..., C, N)`` layout.

The residual blocks need three linear maps for every convolution: the
convolution itself, its adjoint with respect to the input (used both as a
"transposed convolution" stage and for backpropagation) and its adjoint with
respect to the filter (the weight gradient). The adjoints are obtained from
``jax.linear_transpose`` of the convolution, so they are exact transposes
of the forward operator.

Classes
-------
ConvDims
    Fixed shape descriptor of one convolution.

Functions
---------
conv
    Cross-correlation of a batch with a filter bank.
conv_data_adjoint
    Adjoint of ``conv`` with respect to its input.
conv_filter_grad
    Adjoint of ``conv`` with respect to its filter.
"""

from dataclasses import dataclass
from typing import Tuple

import jax
import jax.numpy as jnp
from jax import lax

# ==============================================================================
# Shape descriptor
# ==============================================================================


@dataclass(frozen=True)
class ConvDims:
    """Shape descriptor of a convolution, fixed at layer construction.

    Attributes
    ----------
    spatial : Tuple[int, ...]
        Spatial size of the convolution input, ``(nx, ny)`` or
        ``(nx, ny, nz)``.
    in_channels : int
        Channels of the convolution input.
    out_channels : int
        Channels of the convolution output.
    kernel : int
        Kernel size along every spatial axis.
    stride : int
        Stride along every spatial axis.
    padding : int
        Symmetric zero padding along every spatial axis.
    """

    spatial: Tuple[int, ...]
    in_channels: int
    out_channels: int
    kernel: int
    stride: int = 1
    padding: int = 0

    def __post_init__(self):
        if len(self.spatial) not in (2, 3):
            raise ValueError(
                f"Only 2D and 3D convolutions are supported, got spatial "
                f"shape {self.spatial}"
            )
        if any(n <= 0 for n in self.output_spatial):
            raise ValueError(
                f"Kernel {self.kernel} with padding {self.padding} and stride "
                f"{self.stride} does not fit spatial shape {self.spatial}"
            )

    # --------------------------------------------------------------------------

    @property
    def ndim(self) -> int:
        return len(self.spatial)

    @property
    def kernel_shape(self) -> Tuple[int, ...]:
        return (self.kernel,) * self.ndim + (self.in_channels, self.out_channels)

    @property
    def output_spatial(self) -> Tuple[int, ...]:
        return tuple(
            (n + 2 * self.padding - self.kernel) // self.stride + 1
            for n in self.spatial
        )

    @property
    def window_strides(self) -> Tuple[int, ...]:
        return (self.stride,) * self.ndim

    @property
    def padding_pairs(self) -> Tuple[Tuple[int, int], ...]:
        return ((self.padding, self.padding),) * self.ndim

    @property
    def dimension_numbers(self) -> lax.ConvDimensionNumbers:
        # (batch, channel, spatial...) positions in a channel-next-to-last,
        # batch-last layout; kernels are (spatial..., I, O).
        nd = self.ndim
        spatial = tuple(range(nd))
        io = (nd + 1, nd) + spatial
        return lax.ConvDimensionNumbers(lhs_spec=io, rhs_spec=io, out_spec=io)

    def input_shape(self, batchsize: int) -> Tuple[int, ...]:
        return self.spatial + (self.in_channels, batchsize)

    def output_shape(self, batchsize: int) -> Tuple[int, ...]:
        return self.output_spatial + (self.out_channels, batchsize)

    # --------------------------------------------------------------------------

    def check_input(self, x: jnp.ndarray, name: str = "input") -> None:
        """Raise ``ValueError`` if ``x`` does not fit the convolution input."""
        check_shape(x, self.spatial + (self.in_channels,), name)

    def check_output(self, y: jnp.ndarray, name: str = "output") -> None:
        """Raise ``ValueError`` if ``y`` does not fit the convolution output."""
        check_shape(y, self.output_spatial + (self.out_channels,), name)


def check_shape(x: jnp.ndarray, expected: Tuple[int, ...], name: str) -> None:
    """Raise ``ValueError`` unless ``x`` is ``expected`` plus a batch axis."""
    shape = tuple(jnp.shape(x))
    if shape[:-1] != tuple(expected):
        raise ValueError(
            f"Shape mismatch for {name}: expected (spatial..., channels) = "
            f"{tuple(expected)} with a trailing batch axis, got {shape}"
        )


# ==============================================================================
# Convolution operators
# ==============================================================================


def conv(x: jnp.ndarray, w: jnp.ndarray, cdims: ConvDims) -> jnp.ndarray:
    """Convolve ``x`` of shape ``(spatial..., C_in, N)`` with ``w``.

    Parameters
    ----------
    x : jnp.ndarray
        Input batch.
    w : jnp.ndarray
        Filter bank of shape ``cdims.kernel_shape``.
    cdims : ConvDims
        Stride, padding and layout of the convolution.

    Returns
    -------
    jnp.ndarray
        Output of shape ``(output_spatial..., C_out, N)``.
    """
    dtype = jnp.result_type(x, w)
    return lax.conv_general_dilated(
        x.astype(dtype),
        w.astype(dtype),
        window_strides=cdims.window_strides,
        padding=cdims.padding_pairs,
        dimension_numbers=cdims.dimension_numbers,
    )


# ------------------------------------------------------------------------------


def conv_data_adjoint(
    dy: jnp.ndarray, w: jnp.ndarray, cdims: ConvDims
) -> jnp.ndarray:
    """Apply the adjoint of ``conv(., w)`` to ``dy``.

    Maps a tensor shaped like the convolution output back to the shape of the
    convolution input, ``cdims.input_shape(N)``.
    """
    dtype = jnp.result_type(dy, w)
    w = w.astype(dtype)
    x0 = jnp.zeros(cdims.input_shape(jnp.shape(dy)[-1]), dtype=dtype)
    transpose = jax.linear_transpose(lambda x: conv(x, w, cdims), x0)
    (dx,) = transpose(dy.astype(dtype))
    return dx


# ------------------------------------------------------------------------------


def conv_filter_grad(
    x: jnp.ndarray, dy: jnp.ndarray, cdims: ConvDims
) -> jnp.ndarray:
    """Gradient of ``<dy, conv(x, w)>`` with respect to the filter ``w``."""
    dtype = jnp.result_type(x, dy)
    x = x.astype(dtype)
    w0 = jnp.zeros(cdims.kernel_shape, dtype=dtype)
    transpose = jax.linear_transpose(lambda w: conv(x, w, cdims), w0)
    (dw,) = transpose(dy.astype(dtype))
    return dw
