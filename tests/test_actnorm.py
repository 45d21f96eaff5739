"""
Tests for the ActNorm layer: data-dependent initialization, invertibility and
the hand-written backward pass.
"""

import jax
import jax.numpy as jnp
import numpy.testing as npt
import pytest

import hintflow
from hintflow import ActNorm


def _randn(key, shape):
    return jax.random.normal(key, shape)


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------


class TestActNormInitialization:
    """The first forward batch fixes the per-channel statistics."""

    def test_output_normalized(self):
        X = 3.0 * _randn(jax.random.PRNGKey(0), (8, 8, 4, 2)) + 1.5
        AN = ActNorm(4)
        Y = AN.forward(X)

        axes = (0, 1, 3)
        npt.assert_allclose(jnp.mean(Y, axis=axes), 0.0, atol=1e-5)
        npt.assert_allclose(jnp.var(Y, axis=axes, ddof=1), 1.0, atol=1e-5)

    def test_parameters_reused_after_init(self):
        AN = ActNorm(4)
        AN.forward(_randn(jax.random.PRNGKey(0), (8, 8, 4, 2)))
        s, b = AN.s.data, AN.b.data

        AN.forward(5.0 * _randn(jax.random.PRNGKey(1), (8, 8, 4, 3)))
        npt.assert_array_equal(AN.s.data, s)
        npt.assert_array_equal(AN.b.data, b)

    def test_reset_reinitializes(self):
        AN = ActNorm(4)
        AN.forward(_randn(jax.random.PRNGKey(0), (8, 8, 4, 2)))
        AN.reset()
        assert not AN.initialized

        X = 2.0 * _randn(jax.random.PRNGKey(1), (8, 8, 4, 2)) - 4.0
        Y = AN.forward(X)
        npt.assert_allclose(jnp.mean(Y, axis=(0, 1, 3)), 0.0, atol=1e-5)
        npt.assert_allclose(jnp.var(Y, axis=(0, 1, 3), ddof=1), 1.0, atol=1e-5)

    def test_module_reset_on_several_layers(self):
        layers = (ActNorm(4), ActNorm(4, logdet=True))
        X0 = _randn(jax.random.PRNGKey(0), (8, 8, 4, 2))
        for AN in layers:
            AN.forward(X0)

        hintflow.reset(layers)
        assert not any(AN.initialized for AN in layers)

        X1 = 0.5 * _randn(jax.random.PRNGKey(1), (8, 8, 4, 3)) + 2.0
        Y, _ = layers[1].forward(X1)
        npt.assert_allclose(jnp.mean(Y, axis=(0, 1, 3)), 0.0, atol=1e-5)
        npt.assert_allclose(jnp.var(Y, axis=(0, 1, 3), ddof=1), 1.0, atol=1e-5)

        # statistics of a later batch do not move the parameters
        s = layers[1].s.data
        layers[1].forward(3.0 * X1)
        npt.assert_array_equal(layers[1].s.data, s)

    def test_inverse_before_init_raises(self):
        AN = ActNorm(4)
        with pytest.raises(RuntimeError, match="before initialization"):
            AN.inverse(jnp.zeros((8, 8, 4, 2)))

    def test_backward_before_init_raises(self):
        AN = ActNorm(4)
        Y = jnp.zeros((8, 8, 4, 2))
        with pytest.raises(RuntimeError):
            AN.backward(Y, Y)

    def test_backward_rejects_broadcastable_gradient(self):
        AN = ActNorm(4)
        Y = AN.forward(_randn(jax.random.PRNGKey(0), (8, 8, 4, 3)))
        with pytest.raises(ValueError, match="dY must have the shape of Y"):
            AN.backward(jnp.ones((8, 8, 4, 1)), Y)

    def test_channel_mismatch_raises(self):
        AN = ActNorm(4)
        with pytest.raises(ValueError, match="expects 4 channels"):
            AN.forward(jnp.ones((8, 8, 3, 2)))


# ---------------------------------------------------------------------------
# Invertibility and log-determinant
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("shape", [(8, 8, 4, 2), (4, 4, 4, 4, 2)])
@pytest.mark.parametrize("logdet", [False, True])
def test_actnorm_invertible(shape, logdet):
    X = _randn(jax.random.PRNGKey(2), shape)
    AN = ActNorm(4, logdet=logdet)
    out = AN.forward(X)
    Y = out[0] if logdet else out

    npt.assert_allclose(AN.inverse(Y), X, rtol=1e-10, atol=1e-10)
    _, X_ = AN.backward(Y, Y)
    npt.assert_allclose(X_, X, rtol=1e-10, atol=1e-10)

    Y2 = _randn(jax.random.PRNGKey(3), shape)
    out2 = AN.forward(AN.inverse(Y2))
    npt.assert_allclose(out2[0] if logdet else out2, Y2, rtol=1e-10, atol=1e-10)


def test_actnorm_logdet_scales_with_pixels():
    X = _randn(jax.random.PRNGKey(4), (4, 4, 2, 2, 3))
    AN = ActNorm(2, logdet=True)
    _, logdet = AN.forward(X)
    expected = 4 * 4 * 2 * jnp.sum(jnp.log(jnp.abs(AN.s.data)))
    npt.assert_allclose(logdet, expected, rtol=1e-12)


# ---------------------------------------------------------------------------
# Gradient tests
# ---------------------------------------------------------------------------


def _actnorm_loss(AN, X, Y0):
    Y, logdet = AN.forward(X)
    return 0.5 * jnp.sum((Y - Y0) ** 2) - logdet, Y - Y0


@pytest.mark.parametrize("shape", [(8, 8, 4, 2), (4, 4, 4, 4, 2)])
def test_actnorm_input_gradient(shape, taylor_test, assert_rates, inner):
    k0, k1, k2 = jax.random.split(jax.random.PRNGKey(5), 3)
    X0 = _randn(k0, shape)
    dX = _randn(k1, shape)
    Y0 = _randn(k2, shape)

    AN = ActNorm(4, logdet=True)
    AN.forward(X0)

    _, dY = _actnorm_loss(AN, X0, Y0)
    Y, _ = AN.forward(X0)
    gX, _ = AN.backward(dY, Y)

    err1, err2 = taylor_test(
        lambda h: float(_actnorm_loss(AN, X0 + h * dX, Y0)[0]),
        inner(dX, gX),
    )
    assert_rates(err1, err2)


@pytest.mark.parametrize("name", ["s", "b"])
def test_actnorm_parameter_gradient(name, taylor_test, assert_rates, inner):
    shape = (8, 8, 4, 2)
    k0, k1, k2 = jax.random.split(jax.random.PRNGKey(6), 3)
    X = _randn(k0, shape)
    Y0 = _randn(k2, shape)

    AN = ActNorm(4, logdet=True)
    AN.forward(X)
    param = getattr(AN, name)
    p0 = param.data
    dp = _randn(k1, p0.shape)

    Y, _ = AN.forward(X)
    AN.backward(Y - Y0, Y)
    directional = inner(dp, param.grad)

    def loss(h):
        param.data = p0 + h * dp
        f = float(_actnorm_loss(AN, X, Y0)[0])
        param.data = p0
        return f

    err1, err2 = taylor_test(loss, directional)
    assert_rates(err1, err2)
