"""
Tensor helpers shared by all layers.

Tensors follow the layout ``(nx, ny, C, N)`` for 2D data and
``(nx, ny, nz, C, N)`` for 3D data: spatial axes first, channels next to
last, batch last.
"""

from math import prod
from typing import Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

CHANNEL_AXIS = -2
BATCH_AXIS = -1

# ------------------------------------------------------------------------------
# Layout
# ------------------------------------------------------------------------------


def check_ndim(x: jnp.ndarray, name: str = "input") -> None:
    """Raise ``ValueError`` unless ``x`` is a 2D (4-dim) or 3D (5-dim) tensor."""
    if jnp.ndim(x) not in (4, 5):
        raise ValueError(
            f"{name} must have layout (nx, ny, C, N) or (nx, ny, nz, C, N), "
            f"got shape {jnp.shape(x)}"
        )


def check_like(
    x: jnp.ndarray, ref: jnp.ndarray, name: str, ref_name: str
) -> None:
    """Raise ``ValueError`` unless ``x`` has exactly the shape of ``ref``."""
    if jnp.shape(x) != jnp.shape(ref):
        raise ValueError(
            f"{name} must have the shape of {ref_name} {jnp.shape(ref)}, "
            f"got {jnp.shape(x)}"
        )


def spatial_shape(x: jnp.ndarray) -> Tuple[int, ...]:
    return tuple(jnp.shape(x)[:-2])


def spatial_size(x: jnp.ndarray) -> int:
    """Number of pixels (or voxels) of a single channel of one sample."""
    return prod(spatial_shape(x))


def non_channel_axes(x: jnp.ndarray) -> Tuple[int, ...]:
    """Axes reduced by per-channel statistics: spatial axes and batch."""
    ndim = jnp.ndim(x)
    return tuple(range(ndim - 2)) + (ndim - 1,)


def channel_view(v: jnp.ndarray, ndim: int) -> jnp.ndarray:
    """Reshape a per-channel vector so it broadcasts against a tensor."""
    return jnp.reshape(v, (1,) * (ndim - 2) + (-1, 1))


# ------------------------------------------------------------------------------
# Channel split / concatenation
# ------------------------------------------------------------------------------


def tensor_split(x: jnp.ndarray) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """Split a tensor into two halves along the channel axis."""
    k = jnp.shape(x)[CHANNEL_AXIS]
    half = k // 2
    return x[..., :half, :], x[..., half:, :]


def tensor_cat(xa: jnp.ndarray, xb: jnp.ndarray) -> jnp.ndarray:
    """Concatenate two tensors along the channel axis."""
    return jnp.concatenate([xa, xb], axis=CHANNEL_AXIS)


# ------------------------------------------------------------------------------
# Activations and their adjoints
# ------------------------------------------------------------------------------


def relu(x: jnp.ndarray) -> jnp.ndarray:
    return jax.nn.relu(x)


def relu_grad(dy: jnp.ndarray, x: jnp.ndarray) -> jnp.ndarray:
    """Backpropagate ``dy`` through ReLU evaluated at pre-activation ``x``."""
    return jnp.where(x > 0, dy, jnp.zeros_like(dy))


def sigmoid(x: jnp.ndarray) -> jnp.ndarray:
    return jax.nn.sigmoid(x)


def sigmoid_grad(dy: jnp.ndarray, y: jnp.ndarray) -> jnp.ndarray:
    """Backpropagate ``dy`` through a sigmoid whose output was ``y``."""
    return dy * y * (1.0 - y)


# ------------------------------------------------------------------------------
# Log-determinants
# ------------------------------------------------------------------------------


def sum_log_abs(s: jnp.ndarray) -> jnp.ndarray:
    return jnp.sum(jnp.log(jnp.abs(s)))


def logdet_scale_forward(s: jnp.ndarray, n_pixels: int = 1) -> jnp.ndarray:
    """Log-determinant of an element-wise scaling shared by ``n_pixels``."""
    return n_pixels * sum_log_abs(s)


def logdet_scale_backward(s: jnp.ndarray, n_pixels: int = 1) -> jnp.ndarray:
    """Gradient of ``logdet_scale_forward`` with respect to ``s``."""
    return n_pixels / s


# ------------------------------------------------------------------------------
# Initialization
# ------------------------------------------------------------------------------


def resolve_key(key: Optional[jax.Array]) -> jax.Array:
    """Return ``key`` or a freshly seeded PRNG key when ``key`` is None."""
    if key is None:
        seed = int(np.random.default_rng().integers(0, 2**31 - 1))
        return jax.random.PRNGKey(seed)
    return key


def glorot_uniform(
    key: jax.Array, shape: Sequence[int], dtype=jnp.float32
) -> jnp.ndarray:
    """Glorot-uniform initialization.

    The last two axes are treated as (fan-in, fan-out); leading axes form the
    receptive field, which matches the ``(k, k, C_in, C_out)`` kernel layout.
    For a 1D shape the single axis is used as both fan-in and fan-out.
    """
    shape = tuple(shape)
    if len(shape) == 1:
        limit = np.sqrt(6.0 / (2 * shape[0]))
        return jax.random.uniform(
            key, shape, dtype=dtype, minval=-limit, maxval=limit
        )
    init = jax.nn.initializers.glorot_uniform(in_axis=-2, out_axis=-1)
    return init(key, shape, dtype)
