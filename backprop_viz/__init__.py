"""
backprop_viz package
~~~~~~~~~~~~~~~~~~~~

Numeric engine behind an interactive neural network visualizer.
Contains the network kernels, the step-by-step training engine, the
snapshot handed to the renderer and the API server.
"""

from backprop_viz.activations import ActivationKind
from backprop_viz.config import EngineConfig, TrainingSample
from backprop_viz.engine import NetworkEngine
from backprop_viz.errors import ConfigurationError, EngineError, PreconditionError
from backprop_viz.sequencer import Action, Mode, Phase
from backprop_viz.snapshot import NetworkSnapshot

__version__ = "1.0.0"

__all__ = [
    'ActivationKind',
    'Action',
    'ConfigurationError',
    'EngineConfig',
    'EngineError',
    'Mode',
    'NetworkEngine',
    'NetworkSnapshot',
    'Phase',
    'PreconditionError',
    'TrainingSample',
]
