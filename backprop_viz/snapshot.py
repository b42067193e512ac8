"""
snapshot.py
~~~~~~~~~~~

Read-only view of the engine state for drawing the network diagram.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np

from backprop_viz.activations import ActivationKind
from backprop_viz.network import NetworkState
from backprop_viz.sequencer import Mode, Phase, describe_phase


class SnapshotEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy arrays, numpy scalars and enums."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.generic):
            return obj.item()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


def _frozen(array: np.ndarray) -> np.ndarray:
    copy = np.array(array, dtype=float, copy=True)
    copy.setflags(write=False)
    return copy


@dataclass(frozen=True)
class NetworkSnapshot:
    """
    Copy of everything a renderer needs after a state change.

    Arrays are independent, non-writeable copies; mutating the engine later
    does not change a snapshot already handed out.
    """

    architecture: Tuple[int, ...]
    weights: Tuple[np.ndarray, ...]
    biases: Tuple[np.ndarray, ...]
    activations: Tuple[np.ndarray, ...]
    gradients: Optional[Tuple[np.ndarray, ...]]
    loss: float
    mode: Mode
    phase: Phase
    activation: ActivationKind
    learning_rate: float

    @classmethod
    def capture(
        cls,
        state: NetworkState,
        mode: Mode,
        phase: Phase,
        activation: ActivationKind,
        learning_rate: float
    ) -> 'NetworkSnapshot':
        gradients = None
        if state.gradients is not None:
            gradients = tuple(_frozen(g) for g in state.gradients)
        return cls(
            architecture=tuple(state.architecture),
            weights=tuple(_frozen(w) for w in state.weights),
            biases=tuple(_frozen(b) for b in state.biases),
            activations=tuple(_frozen(a) for a in state.activations),
            gradients=gradients,
            loss=float(state.loss),
            mode=mode,
            phase=phase,
            activation=activation,
            learning_rate=float(learning_rate)
        )

    @property
    def description(self) -> str:
        return describe_phase(self.mode, self.phase)

    def _fields(self) -> Dict[str, Any]:
        return {
            'architecture': list(self.architecture),
            'weights': list(self.weights),
            'biases': list(self.biases),
            'activations': list(self.activations),
            'gradients': None if self.gradients is None else list(self.gradients),
            'loss': self.loss,
            'mode': self.mode,
            'phase': self.phase,
            'activation': self.activation,
            'learning_rate': self.learning_rate,
            'description': self.description
        }

    def to_json(self) -> str:
        return json.dumps(self._fields(), cls=SnapshotEncoder)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-python representation, ready for ``jsonify``."""
        return json.loads(self.to_json())
