"""
Shared tensor, log-determinant and convolution utilities.
"""

from .tensors import (
    CHANNEL_AXIS,
    BATCH_AXIS,
    check_ndim,
    check_like,
    spatial_shape,
    spatial_size,
    non_channel_axes,
    channel_view,
    tensor_split,
    tensor_cat,
    relu,
    relu_grad,
    sigmoid,
    sigmoid_grad,
    sum_log_abs,
    logdet_scale_forward,
    logdet_scale_backward,
    resolve_key,
    glorot_uniform,
)
from .convolution import (
    ConvDims,
    check_shape,
    conv,
    conv_data_adjoint,
    conv_filter_grad,
)

__all__ = [
    "CHANNEL_AXIS",
    "BATCH_AXIS",
    "check_ndim",
    "check_like",
    "spatial_shape",
    "spatial_size",
    "non_channel_axes",
    "channel_view",
    "tensor_split",
    "tensor_cat",
    "relu",
    "relu_grad",
    "sigmoid",
    "sigmoid_grad",
    "sum_log_abs",
    "logdet_scale_forward",
    "logdet_scale_backward",
    "resolve_key",
    "glorot_uniform",
    "ConvDims",
    "check_shape",
    "conv",
    "conv_data_adjoint",
    "conv_filter_grad",
]
