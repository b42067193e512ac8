"""
network.py
~~~~~~~~~~

Numeric kernels for a small fully-connected feedforward network.

Every function takes a ``NetworkState`` and returns a new one; the input
state is never modified. Weight matrices are laid out ``(n_in, n_out)`` so
that ``weights[l][i, j]`` connects neuron ``i`` of layer ``l`` to neuron
``j`` of layer ``l + 1``. Activations are 1-d vectors, one per layer.
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

import numpy as np

from backprop_viz.activations import (
    ActivationLike,
    activation_derivative,
    apply_activation,
)
from backprop_viz.config import TrainingSample
from backprop_viz.errors import ConfigurationError, PreconditionError

logger = logging.getLogger(__name__)

WEIGHT_RANGE = 1.0
BIAS_RANGE = 0.25


@dataclass(frozen=True)
class NetworkState:
    """
    All tensors of the network at one point of a training cycle.

    ``gradients`` is None whenever no backward pass has been run against
    the current weights and activations. ``forwarded`` is True only while
    the activations were computed with the current weights.
    """

    architecture: List[int]
    weights: List[np.ndarray]
    biases: List[np.ndarray]
    activations: List[np.ndarray]
    gradients: Optional[List[np.ndarray]] = None
    loss: float = 0.0
    forwarded: bool = False

    @property
    def num_layers(self) -> int:
        return len(self.architecture)

    @property
    def output(self) -> np.ndarray:
        return self.activations[-1]


def initialize_state(
    architecture: Sequence[int],
    sample_input: Sequence[float],
    rng: Optional[np.random.Generator] = None
) -> NetworkState:
    """
    Create a freshly initialized network.

    Weights are drawn uniformly from (-1, 1) and biases from (-0.25, 0.25).
    All activations start at zero except the input layer, which holds
    ``sample_input``.

    Args:
        architecture: Neuron count per layer, already validated
        sample_input: Values for the input layer
        rng: Random generator; a new unseeded one is used if omitted

    Returns:
        NetworkState with no gradients and zero loss
    """
    rng = rng if rng is not None else np.random.default_rng()
    sizes = list(architecture)

    weights = [
        rng.uniform(-WEIGHT_RANGE, WEIGHT_RANGE, size=(n_in, n_out))
        for n_in, n_out in zip(sizes[:-1], sizes[1:])
    ]
    biases = [rng.uniform(-BIAS_RANGE, BIAS_RANGE, size=n) for n in sizes[1:]]

    return NetworkState(
        architecture=sizes,
        weights=weights,
        biases=biases,
        activations=_input_activations(sizes, sample_input)
    )


def state_from_parameters(
    architecture: Sequence[int],
    weights: Sequence[Sequence[Sequence[float]]],
    biases: Sequence[Sequence[float]],
    sample_input: Sequence[float]
) -> NetworkState:
    """
    Build a state from explicit weights and biases.

    Raises:
        ConfigurationError: If a matrix or vector does not fit the architecture
    """
    sizes = list(architecture)
    if len(weights) != len(sizes) - 1 or len(biases) != len(sizes) - 1:
        raise ConfigurationError(
            f'Expected {len(sizes) - 1} weight matrices and bias vectors, '
            f'got {len(weights)} and {len(biases)}'
        )

    weight_arrays = [np.array(w, dtype=float) for w in weights]
    bias_arrays = [np.array(b, dtype=float) for b in biases]

    for layer, (w, b) in enumerate(zip(weight_arrays, bias_arrays)):
        expected = (sizes[layer], sizes[layer + 1])
        if w.shape != expected:
            raise ConfigurationError(
                f'Weight matrix {layer} has shape {w.shape}, expected {expected}'
            )
        if b.shape != (sizes[layer + 1],):
            raise ConfigurationError(
                f'Bias vector {layer} has shape {b.shape}, '
                f'expected ({sizes[layer + 1]},)'
            )

    return NetworkState(
        architecture=sizes,
        weights=weight_arrays,
        biases=bias_arrays,
        activations=_input_activations(sizes, sample_input)
    )


def with_input(state: NetworkState, sample_input: Sequence[float]) -> NetworkState:
    """
    Return ``state`` with the input layer set to ``sample_input``.

    Activations of later layers and any gradients no longer belong to the
    input layer, so the returned state needs a new forward pass.
    """
    activations = list(state.activations)
    activations[0] = _input_vector(state.architecture, sample_input)
    return replace(state, activations=activations, gradients=None, forwarded=False)


def mse_loss(output: np.ndarray, target: Sequence[float]) -> float:
    """Mean squared error between ``output`` and ``target``."""
    target = np.asarray(target, dtype=float)
    return float(np.mean((target - output) ** 2))


def forward_pass(
    state: NetworkState,
    sample: TrainingSample,
    activation: ActivationLike
) -> NetworkState:
    """
    Propagate ``sample.input`` through the network and compute the loss.

    For each layer ``l >= 1``:
        ``a[l] = f(b[l-1] + a[l-1] @ W[l-1])``

    Raises:
        PreconditionError: If the sample does not fit the architecture
    """
    _check_sample(state.architecture, sample)

    activations = [np.array(sample.input, dtype=float)]
    for w, b in zip(state.weights, state.biases):
        z = b + activations[-1] @ w
        activations.append(apply_activation(z, activation))

    loss = mse_loss(activations[-1], sample.target)
    logger.debug(f"Forward pass: output={activations[-1].tolist()}, loss={loss:.6f}")

    return replace(
        state,
        activations=activations,
        gradients=None,
        loss=loss,
        forwarded=True
    )


def backward_pass(
    state: NetworkState,
    target: Sequence[float],
    activation: ActivationLike
) -> NetworkState:
    """
    Compute dLoss/dActivation for every layer in one reverse sweep.

    The output layer gets ``2 * (output - target)``; every earlier layer gets
    ``W[l] @ (grad[l+1] * f'(a[l+1]))`` with ``f'`` evaluated at the
    activation values. The input layer is included for uniformity.

    Raises:
        PreconditionError: If the activations are not from a forward pass
            with the current weights, or the target has the wrong length
    """
    if not state.forwarded:
        raise PreconditionError(
            'Backward pass requires a forward pass with the current weights'
        )
    target = np.asarray(target, dtype=float)
    if target.shape != state.output.shape:
        raise PreconditionError(
            f'Target has {target.size} values, '
            f'output layer has {state.output.size} neurons'
        )

    gradients: List[np.ndarray] = [None] * state.num_layers
    gradients[-1] = 2.0 * (state.output - target)

    for layer in range(state.num_layers - 2, -1, -1):
        delta = gradients[layer + 1] * activation_derivative(
            state.activations[layer + 1], activation
        )
        gradients[layer] = state.weights[layer] @ delta

    logger.debug(f"Backward pass: output gradient={gradients[-1].tolist()}")
    return replace(state, gradients=gradients)


def update_parameters(
    state: NetworkState,
    learning_rate: float,
    activation: ActivationLike
) -> NetworkState:
    """
    Apply one step of plain gradient descent.

    ``W[l] -= lr * outer(a[l], grad[l+1] * f'(a[l+1]))`` and
    ``b[l] -= lr * grad[l+1] * f'(a[l+1])``.

    The returned state has no gradients and stale activations, since both
    were computed against the previous weights.

    Raises:
        PreconditionError: If no backward pass has been run
    """
    if state.gradients is None:
        raise PreconditionError('Weight update requires a backward pass first')

    weights = []
    biases = []
    for layer, (w, b) in enumerate(zip(state.weights, state.biases)):
        delta = state.gradients[layer + 1] * activation_derivative(
            state.activations[layer + 1], activation
        )
        weights.append(w - learning_rate * np.outer(state.activations[layer], delta))
        biases.append(b - learning_rate * delta)

    return replace(
        state,
        weights=weights,
        biases=biases,
        gradients=None,
        forwarded=False
    )


def _input_activations(
    architecture: Sequence[int],
    sample_input: Sequence[float]
) -> List[np.ndarray]:
    activations = [np.zeros(size) for size in architecture]
    activations[0] = _input_vector(architecture, sample_input)
    return activations


def _input_vector(
    architecture: Sequence[int],
    sample_input: Sequence[float]
) -> np.ndarray:
    vector = np.array(sample_input, dtype=float)
    if vector.shape != (architecture[0],):
        raise PreconditionError(
            f'Sample input has {vector.size} values, '
            f'input layer has {architecture[0]} neurons'
        )
    return vector


def _check_sample(architecture: Sequence[int], sample: TrainingSample) -> None:
    _input_vector(architecture, sample.input)
    if len(sample.target) != architecture[-1]:
        raise PreconditionError(
            f'Sample target has {len(sample.target)} values, '
            f'output layer has {architecture[-1]} neurons'
        )
