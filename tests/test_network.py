"""
test_network.py
~~~~~~~~~~~~~~~

Unit tests for the forward pass, backpropagation and weight update kernels.
"""

import math

import numpy as np
import pytest

from backprop_viz.config import TrainingSample
from backprop_viz.errors import ConfigurationError, PreconditionError
from backprop_viz.network import (
    backward_pass,
    forward_pass,
    initialize_state,
    mse_loss,
    state_from_parameters,
    update_parameters,
    with_input,
)


def sigmoid(x):
    return 1 / (1 + math.exp(-x))


@pytest.fixture
def sample():
    return TrainingSample(input=[0.3, 0.9], target=[1.0])


@pytest.fixture
def fixed_state(sample):
    """A [2, 3, 1] network with all weights 0.5 and all biases 0."""
    return state_from_parameters(
        [2, 3, 1],
        weights=[[[0.5] * 3] * 2, [[0.5]] * 3],
        biases=[[0.0] * 3, [0.0]],
        sample_input=sample.input
    )


@pytest.mark.unit
class TestInitialization:
    """Test tensor allocation."""

    @pytest.mark.parametrize('architecture', [[2, 3, 1], [1, 1], [4, 5, 6, 2]])
    def test_shapes_follow_architecture(self, architecture):
        state = initialize_state(architecture, [0.1] * architecture[0])

        assert len(state.weights) == len(architecture) - 1
        for layer, (w, b) in enumerate(zip(state.weights, state.biases)):
            assert w.shape == (architecture[layer], architecture[layer + 1])
            assert b.shape == (architecture[layer + 1],)
        assert [a.shape for a in state.activations] == [(n,) for n in architecture]

    def test_values_in_range(self):
        state = initialize_state([6, 8, 4], [0.0] * 6, rng=np.random.default_rng(3))
        for w, b in zip(state.weights, state.biases):
            assert np.all(np.abs(w) < 1.0)
            assert np.all(np.abs(b) < 0.25)

    def test_input_layer_holds_sample_rest_zero(self):
        state = initialize_state([2, 3, 1], [0.3, 0.9])
        assert np.array_equal(state.activations[0], [0.3, 0.9])
        assert not state.activations[1].any()
        assert not state.activations[2].any()

    def test_starts_without_gradients_or_loss(self):
        state = initialize_state([2, 3, 1], [0.3, 0.9])
        assert state.gradients is None
        assert state.loss == 0.0
        assert state.forwarded is False

    def test_reinitialization_changes_values_not_shapes(self):
        rng = np.random.default_rng(11)
        first = initialize_state([2, 3, 1], [0.3, 0.9], rng=rng)
        second = initialize_state([2, 3, 1], [0.3, 0.9], rng=rng)

        for w1, w2 in zip(first.weights, second.weights):
            assert w1.shape == w2.shape
            assert not np.array_equal(w1, w2)

    def test_same_seed_same_weights(self):
        first = initialize_state([2, 3, 1], [0.3, 0.9], rng=np.random.default_rng(5))
        second = initialize_state([2, 3, 1], [0.3, 0.9], rng=np.random.default_rng(5))
        for w1, w2 in zip(first.weights, second.weights):
            assert np.array_equal(w1, w2)

    def test_state_from_parameters_rejects_bad_shape(self):
        with pytest.raises(ConfigurationError):
            state_from_parameters(
                [2, 3, 1],
                weights=[[[0.5] * 2] * 3, [[0.5]] * 3],
                biases=[[0.0] * 3, [0.0]],
                sample_input=[0.3, 0.9]
            )

    def test_state_from_parameters_rejects_missing_layer(self):
        with pytest.raises(ConfigurationError):
            state_from_parameters(
                [2, 3, 1],
                weights=[[[0.5] * 3] * 2],
                biases=[[0.0] * 3],
                sample_input=[0.3, 0.9]
            )


@pytest.mark.unit
class TestForwardPass:
    """Test forward propagation and the loss."""

    def test_hand_computed_output(self, fixed_state, sample):
        state = forward_pass(fixed_state, sample, 'sigmoid')

        hidden = sigmoid(0.5 * 0.3 + 0.5 * 0.9)
        output = sigmoid(3 * 0.5 * hidden)

        assert np.allclose(state.activations[1], [hidden] * 3)
        assert state.output[0] == pytest.approx(output)
        assert state.loss == pytest.approx((1.0 - output) ** 2)
        assert state.forwarded is True

    def test_deterministic(self, sample):
        state = initialize_state([2, 4, 3, 1], sample.input, rng=np.random.default_rng(1))
        first = forward_pass(state, sample, 'tanh')
        second = forward_pass(first, sample, 'tanh')

        for a1, a2 in zip(first.activations, second.activations):
            assert np.array_equal(a1, a2)
        assert first.loss == second.loss

    def test_does_not_modify_input_state(self, fixed_state, sample):
        forward_pass(fixed_state, sample, 'sigmoid')
        assert not fixed_state.activations[1].any()
        assert fixed_state.forwarded is False

    def test_refreshes_input_layer_from_sample(self, fixed_state):
        new_sample = TrainingSample(input=[-1.0, 2.0], target=[0.0])
        state = forward_pass(fixed_state, new_sample, 'sigmoid')
        assert np.array_equal(state.activations[0], [-1.0, 2.0])

    def test_relu_clamps_negative(self, sample):
        state = state_from_parameters(
            [2, 1], weights=[[[-1.0], [-1.0]]], biases=[[0.0]], sample_input=sample.input
        )
        state = forward_pass(state, sample, 'relu')
        assert state.output[0] == 0.0

    def test_sample_mismatch_raises(self, fixed_state):
        with pytest.raises(PreconditionError):
            forward_pass(fixed_state, TrainingSample([0.1, 0.2, 0.3], [1.0]), 'sigmoid')
        with pytest.raises(PreconditionError):
            forward_pass(fixed_state, TrainingSample([0.1, 0.2], [1.0, 0.0]), 'sigmoid')

    def test_with_input_sets_layer_zero(self, fixed_state):
        state = with_input(fixed_state, [0.7, 0.1])
        assert np.array_equal(state.activations[0], [0.7, 0.1])
        assert np.array_equal(fixed_state.activations[0], [0.3, 0.9])

    def test_with_input_invalidates_cycle(self, fixed_state):
        forwarded = forward_pass(fixed_state, TrainingSample([0.3, 0.9], [1.0]), 'sigmoid')
        state = with_input(backward_pass(forwarded, [1.0], 'sigmoid'), [0.7, 0.1])
        assert state.gradients is None
        assert state.forwarded is False
        with pytest.raises(PreconditionError):
            update_parameters(state, 0.1, 'sigmoid')


@pytest.mark.unit
class TestLoss:
    """Test the mean squared error."""

    def test_zero_iff_equal(self):
        assert mse_loss(np.array([0.2, 0.8]), [0.2, 0.8]) == 0.0
        assert mse_loss(np.array([0.2, 0.8]), [0.2, 0.81]) > 0.0

    def test_mean_over_outputs(self):
        assert mse_loss(np.array([1.0, 0.0]), [0.0, 0.0]) == pytest.approx(0.5)

    def test_never_negative(self):
        rng = np.random.default_rng(2)
        for _ in range(20):
            assert mse_loss(rng.normal(size=3), rng.normal(size=3)) >= 0.0


@pytest.mark.unit
class TestBackwardPass:
    """Test gradient computation."""

    def test_hand_computed_gradients(self, fixed_state, sample):
        state = backward_pass(
            forward_pass(fixed_state, sample, 'sigmoid'), sample.target, 'sigmoid'
        )

        hidden = sigmoid(0.6)
        output = sigmoid(1.5 * hidden)
        grad_output = 2 * (output - 1.0)
        grad_hidden = grad_output * output * (1 - output) * 0.5
        grad_input = 3 * grad_hidden * hidden * (1 - hidden) * 0.5

        assert state.gradients[2][0] == pytest.approx(grad_output)
        assert np.allclose(state.gradients[1], [grad_hidden] * 3)
        assert np.allclose(state.gradients[0], [grad_input] * 2)

    def test_gradient_shapes_match_activations(self, sample):
        state = initialize_state([2, 5, 4, 1], sample.input, rng=np.random.default_rng(0))
        state = backward_pass(forward_pass(state, sample, 'relu'), sample.target, 'relu')
        assert [g.shape for g in state.gradients] == [a.shape for a in state.activations]

    def test_same_weights_same_gradients(self, fixed_state, sample):
        forwarded = forward_pass(fixed_state, sample, 'sigmoid')
        first = backward_pass(forwarded, sample.target, 'sigmoid')
        second = backward_pass(forwarded, sample.target, 'sigmoid')
        for g1, g2 in zip(first.gradients, second.gradients):
            assert np.array_equal(g1, g2)

    def test_output_gradient_not_averaged(self, sample):
        state = state_from_parameters(
            [2, 2], weights=[[[0.0, 0.0], [0.0, 0.0]]], biases=[[0.0, 0.0]],
            sample_input=sample.input
        )
        two_outputs = TrainingSample(input=sample.input, target=[1.0, 0.0])
        state = backward_pass(forward_pass(state, two_outputs, 'sigmoid'), [1.0, 0.0], 'sigmoid')
        # outputs are sigmoid(0) = 0.5
        assert np.allclose(state.gradients[1], [-1.0, 1.0])

    def test_requires_forward_pass(self, fixed_state, sample):
        with pytest.raises(PreconditionError):
            backward_pass(fixed_state, sample.target, 'sigmoid')

    def test_target_mismatch_raises(self, fixed_state, sample):
        forwarded = forward_pass(fixed_state, sample, 'sigmoid')
        with pytest.raises(PreconditionError):
            backward_pass(forwarded, [1.0, 0.0], 'sigmoid')


@pytest.mark.unit
class TestUpdate:
    """Test gradient descent on weights and biases."""

    def test_hand_computed_update(self, fixed_state, sample):
        lr = 0.1
        state = backward_pass(
            forward_pass(fixed_state, sample, 'sigmoid'), sample.target, 'sigmoid'
        )
        updated = update_parameters(state, lr, 'sigmoid')

        hidden = sigmoid(0.6)
        output = sigmoid(1.5 * hidden)
        delta_out = 2 * (output - 1.0) * output * (1 - output)
        delta_hidden = delta_out * 0.5 * hidden * (1 - hidden)

        assert np.allclose(updated.weights[1], 0.5 - lr * delta_out * hidden)
        assert updated.biases[1][0] == pytest.approx(-lr * delta_out)
        assert np.allclose(updated.weights[0][0], 0.5 - lr * delta_hidden * 0.3)
        assert np.allclose(updated.weights[0][1], 0.5 - lr * delta_hidden * 0.9)
        assert np.allclose(updated.biases[0], -lr * delta_hidden)

    def test_invalidates_gradients_and_activations(self, fixed_state, sample):
        state = backward_pass(
            forward_pass(fixed_state, sample, 'sigmoid'), sample.target, 'sigmoid'
        )
        updated = update_parameters(state, 0.1, 'sigmoid')
        assert updated.gradients is None
        assert updated.forwarded is False
        # the old state still holds its gradients
        assert state.gradients is not None

    def test_requires_backward_pass(self, fixed_state, sample):
        with pytest.raises(PreconditionError):
            update_parameters(fixed_state, 0.1, 'sigmoid')
        with pytest.raises(PreconditionError):
            update_parameters(forward_pass(fixed_state, sample, 'sigmoid'), 0.1, 'sigmoid')

    @pytest.mark.parametrize('activation', ['sigmoid', 'tanh'])
    def test_loss_decreases_over_cycles(self, activation):
        sample = TrainingSample(input=[0.3, 0.9], target=[0.8])
        state = initialize_state([2, 3, 1], sample.input, rng=np.random.default_rng(42))

        losses = []
        for _ in range(50):
            state = forward_pass(state, sample, activation)
            losses.append(state.loss)
            state = backward_pass(state, sample.target, activation)
            state = update_parameters(state, 0.1, activation)

        assert losses[-1] < losses[0]
