"""
hints.py
~~~~~~~~

Learning hints shown next to the network diagram.
"""

from typing import Dict, List

from backprop_viz.activations import ActivationKind
from backprop_viz.sequencer import Action, Mode, Phase, next_action

_ACTIVATION_FORMULAS = {
    ActivationKind.SIGMOID: "σ(z) = 1 / (1 + e^-z),  σ'(a) = a × (1 - a)",
    ActivationKind.RELU: "relu(z) = max(0, z),  relu'(a) = 1 if a > 0 else 0",
    ActivationKind.TANH: "tanh(z),  tanh'(a) = 1 - a²",
}

_PHASE_HINTS = {
    Action.FORWARD: {
        'title': 'Forward Pass',
        'text': 'Data flows from input to output. Each neuron calculates:',
        'formula': 'activation = f(Σ(weight × input) + bias)'
    },
    Action.BACKWARD: {
        'title': 'Backpropagation',
        'text': 'Gradients flow backward using chain rule:',
        'formula': '∂L/∂w = ∂L/∂a × ∂a/∂z × ∂z/∂w'
    },
    Action.UPDATE: {
        'title': 'Weight Updates',
        'text': 'Weights are updated to minimize loss:',
        'formula': 'new_weight = old_weight - learning_rate × gradient'
    },
}

_VISUAL_CUES = {
    'title': 'Visual Cues',
    'text': 'Thicker lines = larger weights/gradients. '
            'Red glow = gradient flow during backprop. '
            'Node color intensity = activation strength.',
    'formula': None
}


def learning_hints(
    activation: ActivationKind,
    mode: Mode,
    phase: Phase
) -> Dict[str, object]:
    """
    Collect hints for the current configuration and phase.

    Returns:
        dict with 'hints' (all hint cards), 'activation' (formula of the
        selected activation) and 'next' (title of the card for the phase
        that runs next, or None once a forward-only pass is complete)
    """
    hints: List[Dict[str, object]] = [dict(h) for h in _PHASE_HINTS.values()]
    hints.append(dict(_VISUAL_CUES))

    step = next_action(mode, phase)
    return {
        'hints': hints,
        'activation': _ACTIVATION_FORMULAS[ActivationKind(activation)],
        'next': _PHASE_HINTS[step[0]]['title'] if step else None
    }
