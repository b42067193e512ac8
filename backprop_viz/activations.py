"""
activations.py
~~~~~~~~~~~~~~

Activation functions and their derivatives.

Derivatives are evaluated at the post-activation value ``a = f(z)``, not at
``z``. For sigmoid and tanh this is exact because both derivatives can be
written in terms of the function output; for relu ``a > 0`` iff ``z > 0``.
Do not rewrite these in terms of ``z``: the backward pass passes activations.
"""

from enum import Enum
from typing import Union

import numpy as np


class ActivationKind(str, Enum):
    """Supported per-neuron nonlinearities."""

    SIGMOID = 'sigmoid'
    RELU = 'relu'
    TANH = 'tanh'


ActivationLike = Union[ActivationKind, str]


def sigmoid(z: np.ndarray) -> np.ndarray:
    """The sigmoid function."""
    return 1.0 / (1.0 + np.exp(-z))


def sigmoid_prime(a: np.ndarray) -> np.ndarray:
    """Derivative of the sigmoid, given ``a = sigmoid(z)``."""
    return a * (1.0 - a)


def relu(z: np.ndarray) -> np.ndarray:
    return np.maximum(0.0, z)


def relu_prime(a: np.ndarray) -> np.ndarray:
    return (a > 0).astype(float)


def tanh(z: np.ndarray) -> np.ndarray:
    return np.tanh(z)


def tanh_prime(a: np.ndarray) -> np.ndarray:
    """Derivative of tanh, given ``a = tanh(z)``."""
    return 1.0 - a * a


_FUNCTIONS = {
    ActivationKind.SIGMOID: (sigmoid, sigmoid_prime),
    ActivationKind.RELU: (relu, relu_prime),
    ActivationKind.TANH: (tanh, tanh_prime),
}


def apply_activation(z: np.ndarray, kind: ActivationLike) -> np.ndarray:
    """Apply the activation function ``kind`` elementwise to ``z``."""
    function, _ = _FUNCTIONS[ActivationKind(kind)]
    return function(np.asarray(z, dtype=float))


def activation_derivative(a: np.ndarray, kind: ActivationLike) -> np.ndarray:
    """
    Evaluate the derivative of ``kind`` at post-activation values ``a``.

    Args:
        a: Output of the activation function (not the weighted input)
        kind: Activation function the values came from

    Returns:
        Array of the same shape as ``a``
    """
    _, derivative = _FUNCTIONS[ActivationKind(kind)]
    return derivative(np.asarray(a, dtype=float))
