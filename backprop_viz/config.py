"""
config.py
~~~~~~~~~

Engine configuration supplied by the input side of the application.

Configuration is validated up front so that the numeric code never has to
deal with a bad architecture or learning rate.
"""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence

from backprop_viz.activations import ActivationKind
from backprop_viz.errors import ConfigurationError
from backprop_viz.sequencer import Mode

DEFAULT_ARCHITECTURE = [2, 3, 1]
DEFAULT_INPUT = [0.3, 0.9]
DEFAULT_TARGET = [1.0]
DEFAULT_LEARNING_RATE = 0.1


@dataclass(frozen=True)
class TrainingSample:
    """A single training example."""

    input: List[float]
    target: List[float]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrainingSample':
        if not isinstance(data, dict):
            raise ConfigurationError('sample must be an object')
        return cls(
            input=_float_list(data.get('input'), 'input'),
            target=_float_list(data.get('target'), 'target')
        )

    def to_dict(self) -> Dict[str, List[float]]:
        return {'input': list(self.input), 'target': list(self.target)}


@dataclass(frozen=True)
class EngineConfig:
    """
    Everything the engine needs from its caller.

    Attributes:
        architecture: Neuron count per layer, input layer first
        sample: Current training example
        learning_rate: Gradient descent step size, must be positive
        activation: Activation function used by every non-input layer
        mode: Forward-only or full training cycle
    """

    architecture: List[int] = field(
        default_factory=lambda: list(DEFAULT_ARCHITECTURE)
    )
    sample: TrainingSample = field(
        default_factory=lambda: TrainingSample(
            list(DEFAULT_INPUT), list(DEFAULT_TARGET)
        )
    )
    learning_rate: float = DEFAULT_LEARNING_RATE
    activation: ActivationKind = ActivationKind.SIGMOID
    mode: Mode = Mode.FULL_CYCLE

    def validate(self) -> 'EngineConfig':
        """
        Check the configuration and return it.

        Raises:
            ConfigurationError: If any field is out of range
        """
        validate_architecture(self.architecture)
        if not isinstance(self.sample, TrainingSample):
            raise ConfigurationError(
                f'sample must be a TrainingSample, got {self.sample!r}'
            )
        validate_sample(self.architecture, self.sample)

        if (isinstance(self.learning_rate, bool)
                or not isinstance(self.learning_rate, (int, float))
                or not self.learning_rate > 0
                or not math.isfinite(self.learning_rate)):
            raise ConfigurationError(
                f'learning_rate must be a positive number, '
                f'got {self.learning_rate!r}'
            )
        if not isinstance(self.activation, ActivationKind):
            raise ConfigurationError(
                f'Unknown activation {self.activation!r}'
            )
        if not isinstance(self.mode, Mode):
            raise ConfigurationError(f'Unknown mode {self.mode!r}')
        return self

    def with_changes(self, **changes: Any) -> 'EngineConfig':
        """Return a validated copy with ``changes`` applied."""
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(
                f'Unknown configuration keys: {sorted(unknown)}'
            )
        if 'activation' in changes:
            changes['activation'] = parse_activation(changes['activation'])
        if 'mode' in changes:
            changes['mode'] = parse_mode(changes['mode'])
        if 'architecture' in changes:
            changes['architecture'] = _architecture(changes['architecture'])
        if isinstance(changes.get('sample'), dict):
            changes['sample'] = TrainingSample.from_dict(changes['sample'])
        return replace(self, **changes).validate()

    @classmethod
    def from_dict(
        cls,
        data: Optional[Dict[str, Any]],
        base: Optional['EngineConfig'] = None
    ) -> 'EngineConfig':
        """
        Build a configuration from a JSON payload.

        Missing keys keep the value from ``base`` (or the defaults).
        The architecture may be given as ``architecture`` or ``layer_sizes``;
        the sample as ``sample`` or as top-level ``input``/``target``.
        """
        return (base or cls()).with_changes(**parse_changes(data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'architecture': list(self.architecture),
            'sample': self.sample.to_dict(),
            'learning_rate': self.learning_rate,
            'activation': self.activation.value,
            'mode': self.mode.value
        }


def parse_changes(data: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Translate an API payload into ``EngineConfig`` field changes."""
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError('Configuration must be a JSON object')

    data = dict(data)
    changes: Dict[str, Any] = {}

    if 'layer_sizes' in data:
        data.setdefault('architecture', data.pop('layer_sizes'))
    if 'architecture' in data:
        changes['architecture'] = _architecture(data.pop('architecture'))

    if 'sample' in data:
        changes['sample'] = TrainingSample.from_dict(data.pop('sample'))
    elif 'input' in data or 'target' in data:
        missing = [k for k in ('input', 'target') if k not in data]
        if missing:
            raise ConfigurationError(
                f'input and target must be given together, '
                f'missing {missing[0]}'
            )
        changes['sample'] = TrainingSample(
            _float_list(data.pop('input'), 'input'),
            _float_list(data.pop('target'), 'target')
        )

    for key in ('learning_rate', 'activation', 'mode'):
        if key in data:
            changes[key] = data.pop(key)

    if data:
        raise ConfigurationError(
            f'Unknown configuration keys: {sorted(data)}'
        )
    return changes


def parse_activation(value: Any) -> ActivationKind:
    try:
        return ActivationKind(value)
    except ValueError:
        choices = ', '.join(kind.value for kind in ActivationKind)
        raise ConfigurationError(
            f'Unknown activation {value!r}. Choose one of: {choices}'
        ) from None


def parse_mode(value: Any) -> Mode:
    try:
        return Mode(value)
    except ValueError:
        choices = ', '.join(mode.value for mode in Mode)
        raise ConfigurationError(
            f'Unknown mode {value!r}. Choose one of: {choices}'
        ) from None


def validate_architecture(architecture: Sequence[int]) -> None:
    """Reject architectures with fewer than 2 layers or empty layers."""
    if len(architecture) < 2:
        raise ConfigurationError(
            f'Architecture must have at least 2 layers, got {list(architecture)}'
        )
    for size in architecture:
        if isinstance(size, bool) or not isinstance(size, int) or size < 1:
            raise ConfigurationError(
                f'Layer sizes must be positive integers, got {list(architecture)}'
            )


def validate_sample(architecture: Sequence[int], sample: TrainingSample) -> None:
    if len(sample.input) != architecture[0]:
        raise ConfigurationError(
            f'Sample input has {len(sample.input)} values, '
            f'input layer has {architecture[0]} neurons'
        )
    if len(sample.target) != architecture[-1]:
        raise ConfigurationError(
            f'Sample target has {len(sample.target)} values, '
            f'output layer has {architecture[-1]} neurons'
        )


def _architecture(value: Any) -> List[int]:
    if not isinstance(value, (list, tuple)):
        raise ConfigurationError('architecture must be a list of layer sizes')
    validate_architecture(value)
    return list(value)


def _float_list(value: Any, name: str) -> List[float]:
    if (not isinstance(value, (list, tuple))
            or any(isinstance(v, bool) for v in value)):
        raise ConfigurationError(f'{name} must be a list of numbers')
    try:
        numbers = [float(v) for v in value]
    except (TypeError, ValueError):
        raise ConfigurationError(
            f'{name} must be a list of numbers, got {value!r}'
        ) from None
    if not all(math.isfinite(v) for v in numbers):
        raise ConfigurationError(f'{name} must contain only finite numbers')
    return numbers
