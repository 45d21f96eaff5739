"""
Hand-written backward passes compared against ``jax.grad``.

Every layer is reduced to the scalar ``<Y, dY> - logdet``; its gradient with
respect to the input and to each parameter must equal what ``backward``
returns and stores, to double precision.
"""

import jax
import jax.numpy as jnp
import numpy.testing as npt
import pytest

from hintflow import (
    ActNorm,
    AffineLayer,
    ConditionalResidualBlock,
    Conv1x1,
    CouplingLayerBasic,
    CouplingLayerHINT,
    ResidualBlock,
)

RTOL = 1e-8
ATOL = 1e-10


def _randn(key, shape):
    return jax.random.normal(key, shape)


def _param_autodiff(functional, param):
    """``jax.grad`` of ``functional()`` with respect to ``param.data``."""
    p0 = param.data

    def f(value):
        param.data = value
        try:
            return functional()
        finally:
            param.data = p0

    return jax.grad(f)(p0)


def _check_params(layer, functional):
    for p in layer.get_params():
        npt.assert_allclose(
            p.grad, _param_autodiff(functional, p), rtol=RTOL, atol=ATOL
        )


# ---------------------------------------------------------------------------
# Scaling layers
# ---------------------------------------------------------------------------


def test_actnorm_matches_autodiff():
    k0, k1 = jax.random.split(jax.random.PRNGKey(0))
    X = _randn(k0, (4, 4, 3, 2))
    dY = _randn(k1, (4, 4, 3, 2))
    AN = ActNorm(3, logdet=True)
    AN.forward(X)

    def functional(X=X):
        Y, logdet = AN.forward(X)
        return jnp.vdot(Y, dY) - logdet

    Y, _ = AN.forward(X)
    dX, _ = AN.backward(dY, Y)
    npt.assert_allclose(dX, jax.grad(functional)(X), rtol=RTOL, atol=ATOL)
    _check_params(AN, functional)


def test_affine_matches_autodiff():
    k0, k1, k2 = jax.random.split(jax.random.PRNGKey(1), 3)
    X = _randn(k0, (4, 4, 4, 3, 2))
    dY = _randn(k1, (4, 4, 4, 3, 2))
    AL = AffineLayer(4, 4, 4, 3, logdet=True, key=k2, dtype=jnp.float64)

    def functional(X=X):
        Y, logdet = AL.forward(X)
        return jnp.vdot(Y, dY) - logdet

    Y, _ = AL.forward(X)
    dX, _ = AL.backward(dY, Y)
    npt.assert_allclose(dX, jax.grad(functional)(X), rtol=RTOL, atol=ATOL)
    _check_params(AL, functional)


# ---------------------------------------------------------------------------
# Channel permutation
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("direction", ["forward", "inverse"])
def test_conv1x1_matches_autodiff(direction):
    k0, k1, k2 = jax.random.split(jax.random.PRNGKey(2), 3)
    X = _randn(k0, (4, 4, 4, 2))
    dY = _randn(k1, (4, 4, 4, 2))
    C = Conv1x1(4, key=k2, dtype=jnp.float64)
    apply = getattr(C, direction)
    adjoint = C.backward if direction == "forward" else C.inverse_backward

    def functional(X=X):
        return jnp.vdot(apply(X), dY)

    dX, _ = adjoint(dY, apply(X))
    npt.assert_allclose(dX, jax.grad(functional)(X), rtol=RTOL, atol=ATOL)
    _check_params(C, functional)


# ---------------------------------------------------------------------------
# Residual blocks
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("conv_kwargs", [{}, {"k1": 4, "p1": 1, "s1": 2}])
def test_residual_block_matches_autodiff(conv_kwargs):
    k0, k1, k2 = jax.random.split(jax.random.PRNGKey(3), 3)
    X = _randn(k0, (8, 8, 2, 2))
    dY = _randn(k1, (8, 8, 4, 2))
    RB = ResidualBlock((8, 8), 2, 6, key=k2, dtype=jnp.float64, **conv_kwargs)

    def functional(X=X):
        return jnp.vdot(RB.forward(X), dY)

    dX = RB.backward(dY, X)
    npt.assert_allclose(dX, jax.grad(functional)(X), rtol=RTOL, atol=ATOL)
    _check_params(RB, functional)


def test_conditional_residual_block_matches_autodiff():
    k0, k1, k2, k3 = jax.random.split(jax.random.PRNGKey(4), 4)
    X = _randn(k0, (8, 8, 2, 2))
    D = _randn(k1, (4, 4, 3, 2))
    dY = _randn(k2, (8, 8, 2, 2))
    RB = ConditionalResidualBlock(
        (8, 8, 2), (4, 4, 3), 4, key=k3, dtype=jnp.float64
    )

    def functional(X=X, D=D):
        return jnp.vdot(RB.forward(X, D)[0], dY)

    dX, dD = RB.backward(dY, None, X, D)
    gX, gD = jax.grad(functional, argnums=(0, 1))(X, D)
    npt.assert_allclose(dX, gX, rtol=RTOL, atol=ATOL)
    npt.assert_allclose(dD, gD, rtol=RTOL, atol=ATOL)
    _check_params(RB, functional)


# ---------------------------------------------------------------------------
# Coupling layers
# ---------------------------------------------------------------------------


def test_coupling_basic_matches_autodiff():
    keys = jax.random.split(jax.random.PRNGKey(5), 5)
    Xa, Xb, dYa, dYb = (_randn(k, (4, 4, 2, 2)) for k in keys[:4])
    CL = CouplingLayerBasic(
        (4, 4), 2, 4, logdet=True, key=keys[4], dtype=jnp.float64
    )

    def functional(Xa=Xa, Xb=Xb):
        Ya, Yb, logdet = CL.forward(Xa, Xb)
        return jnp.vdot(Ya, dYa) + jnp.vdot(Yb, dYb) - logdet

    Ya, Yb, _ = CL.forward(Xa, Xb)
    dXa, dXb, _, _ = CL.backward(dYa, dYb, Ya, Yb)
    gXa, gXb = jax.grad(functional, argnums=(0, 1))(Xa, Xb)
    npt.assert_allclose(dXa, gXa, rtol=RTOL, atol=ATOL)
    npt.assert_allclose(dXb, gXb, rtol=RTOL, atol=ATOL)
    _check_params(CL, functional)


@pytest.mark.parametrize("permute", ["none", "lower", "both", "full"])
def test_hint_matches_autodiff(permute):
    k0, k1, k2 = jax.random.split(jax.random.PRNGKey(6), 3)
    X = _randn(k0, (4, 4, 16, 2))
    dY = _randn(k1, (4, 4, 16, 2))
    H = CouplingLayerHINT(
        (4, 4), 16, 4, logdet=True, permute=permute, key=k2, dtype=jnp.float64
    )

    def functional(X=X):
        Y, logdet = H.forward(X)
        return jnp.vdot(Y, dY) - logdet

    Y, _ = H.forward(X)
    dX, _ = H.backward(dY, Y)
    npt.assert_allclose(dX, jax.grad(functional)(X), rtol=RTOL, atol=ATOL)
    _check_params(H, functional)
