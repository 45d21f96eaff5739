"""
Shared test fixtures and configuration for hintflow tests.

Tests run JAX in double precision so that inversion errors and the Taylor
expansions of the gradient tests are not dominated by round-off.
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

jax.config.update("jax_enable_x64", True)
jax.config.update("jax_platform_name", "cpu")


@pytest.fixture
def taylor_test():
    """Return a function running a first/second-order Taylor test.

    ``loss`` maps a step ``h`` to the scalar loss at ``x0 + h * dx``;
    ``directional`` is ``<dx, gradient>`` evaluated at ``h = 0``. The
    function returns the first-order errors ``|f(h) - f(0)|`` and the
    second-order errors ``|f(h) - f(0) - h * directional|`` for ``maxiter``
    successive halvings of ``h``.
    """

    def _run(loss, directional, h=0.1, maxiter=6):
        f0 = loss(0.0)
        err1 = np.zeros(maxiter)
        err2 = np.zeros(maxiter)
        for j in range(maxiter):
            f = loss(h)
            err1[j] = abs(f - f0)
            err2[j] = abs(f - f0 - h * directional)
            h = h / 2
        return err1, err2

    return _run


def assert_taylor_rates(err1, err2):
    """First-order error halves and second-order error quarters per halving."""
    n = len(err1)
    np.testing.assert_allclose(err1[-1] / (err1[0] / 2 ** (n - 1)), 1.0, atol=1e1)
    np.testing.assert_allclose(err2[-1] / (err2[0] / 4 ** (n - 1)), 1.0, atol=1e1)


@pytest.fixture
def assert_rates():
    return assert_taylor_rates


def dot(a, b) -> float:
    return float(jnp.vdot(jnp.ravel(a), jnp.ravel(b)))


@pytest.fixture
def inner():
    return dot
