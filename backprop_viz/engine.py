"""
engine.py
~~~~~~~~~

The network engine: owns the configuration and current network state and
drives a training cycle one phase at a time.

Typical use:

    >>> engine = NetworkEngine(EngineConfig(architecture=[2, 3, 1]), seed=0)
    >>> engine.advance()      # forward pass
    <Action.FORWARD: 'forward'>
    >>> engine.snapshot().loss >= 0
    True

Every operation runs to completion before returning. Each operation builds a
new ``NetworkState`` and replaces the old one with a single assignment, so a
caller never sees tensors from two different architectures at once.
"""

import logging
from typing import Any, Optional, Sequence

import numpy as np

from backprop_viz import network
from backprop_viz.config import EngineConfig
from backprop_viz.sequencer import Action, Mode, Phase, coerce_phase, next_action
from backprop_viz.snapshot import NetworkSnapshot

logger = logging.getLogger(__name__)


class NetworkEngine:
    """
    Forward pass, backpropagation and gradient descent for one network.

    The engine can be driven phase by phase with ``advance()``, which follows
    the sequencer for the configured mode, or through the individual
    ``forward()``, ``backward()`` and ``update()`` operations, which check
    their own preconditions.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        seed: Optional[int] = None
    ):
        """
        Create an engine and initialize its network.

        Args:
            config: Engine configuration; defaults to a [2, 3, 1] sigmoid
                network in full-cycle mode
            seed: Seed for weight initialization, for reproducible runs

        Raises:
            ConfigurationError: If ``config`` is invalid
        """
        self._config = (config or EngineConfig()).validate()
        self._rng = np.random.default_rng(seed)
        self._state: network.NetworkState
        self._phase = Phase.READY
        self.initialize()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def state(self) -> network.NetworkState:
        return self._state

    @property
    def phase(self) -> Phase:
        return self._phase

    @property
    def mode(self) -> Mode:
        return self._config.mode

    @property
    def loss(self) -> float:
        return self._state.loss

    # ------------------------------------------------------------------
    # Engine operations
    # ------------------------------------------------------------------

    def initialize(self) -> NetworkSnapshot:
        """
        Replace all tensors with freshly randomized ones.

        Clears gradients and loss and returns the sequencer to READY.
        """
        config = self._config
        self._state = network.initialize_state(
            config.architecture, config.sample.input, rng=self._rng
        )
        self._phase = Phase.READY
        logger.info(
            f"Initialized network with architecture {config.architecture}, "
            f"activation={config.activation.value}"
        )
        return self.snapshot()

    def reset(self) -> NetworkSnapshot:
        """Reinitialize the network regardless of mode or phase."""
        logger.info("Resetting network")
        return self.initialize()

    def forward(self) -> NetworkSnapshot:
        """Run a forward pass with the current sample."""
        config = self._config
        self._state = network.forward_pass(
            self._state, config.sample, config.activation
        )
        logger.debug(f"Forward pass complete, loss={self._state.loss:.6f}")
        return self.snapshot()

    def backward(self) -> NetworkSnapshot:
        """
        Compute gradients for the current activations.

        Raises:
            PreconditionError: If no forward pass was run with the
                current weights
        """
        config = self._config
        self._state = network.backward_pass(
            self._state, config.sample.target, config.activation
        )
        logger.debug("Backward pass complete")
        return self.snapshot()

    def update(self) -> NetworkSnapshot:
        """
        Apply one gradient descent step to weights and biases.

        Raises:
            PreconditionError: If no backward pass was run since the last
                forward pass or update
        """
        config = self._config
        self._state = network.update_parameters(
            self._state, config.learning_rate, config.activation
        )
        logger.debug(f"Weights updated with learning_rate={config.learning_rate}")
        return self.snapshot()

    def advance(self) -> Optional[Action]:
        """
        Perform the single phase appropriate to the current mode and phase.

        Returns:
            The action that was performed, or None if the cycle is finished
            (forward-only mode after its pass, until reset)
        """
        step = next_action(self.mode, self._phase)
        if step is None:
            logger.debug(f"Nothing to do in phase {self._phase.value}")
            return None

        action, next_phase = step
        if action is Action.FORWARD:
            self.forward()
        elif action is Action.BACKWARD:
            self.backward()
        else:
            self.update()

        logger.debug(
            f"{action.value}: {self._phase.value} -> {next_phase.value}"
        )
        self._phase = next_phase
        return action

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def configure(self, **changes: Any) -> NetworkSnapshot:
        """
        Apply configuration changes.

        - architecture: reinitializes the network (phase returns to READY)
        - sample: refreshes the input layer now; a cycle in progress is
          abandoned and the phase returns to READY
        - mode: re-maps the phase onto the new mode without resetting
        - learning_rate, activation: used by the next operation

        Raises:
            ConfigurationError: If the resulting configuration is invalid;
                the engine is left unchanged
        """
        new_config = self._config.with_changes(**changes)
        old_config = self._config
        self._config = new_config

        if new_config.architecture != old_config.architecture:
            logger.info(
                f"Architecture changed from {old_config.architecture} "
                f"to {new_config.architecture}"
            )
            return self.initialize()

        if new_config.sample != old_config.sample:
            self._state = network.with_input(self._state, new_config.sample.input)
            if self._phase is not Phase.READY:
                logger.info(
                    f"Sample changed in phase {self._phase.value}, "
                    f"restarting the cycle"
                )
                self._phase = Phase.READY

        if new_config.mode != old_config.mode:
            self._phase = coerce_phase(new_config.mode, self._phase)
            logger.info(
                f"Mode changed to {new_config.mode.value}, "
                f"phase is {self._phase.value}"
            )

        return self.snapshot()

    def set_parameters(
        self,
        weights: Sequence[Sequence[Sequence[float]]],
        biases: Sequence[Sequence[float]]
    ) -> NetworkSnapshot:
        """
        Replace weights and biases with explicit values.

        Activations, gradients and loss are cleared as on initialization.

        Raises:
            ConfigurationError: If the shapes do not match the architecture
        """
        config = self._config
        self._state = network.state_from_parameters(
            config.architecture, weights, biases, config.sample.input
        )
        self._phase = Phase.READY
        logger.info("Loaded explicit weights and biases")
        return self.snapshot()

    def snapshot(self) -> NetworkSnapshot:
        """Read-only copy of the current state for rendering."""
        config = self._config
        return NetworkSnapshot.capture(
            self._state,
            mode=config.mode,
            phase=coerce_phase(config.mode, self._phase),
            activation=config.activation,
            learning_rate=config.learning_rate
        )
