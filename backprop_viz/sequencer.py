"""
sequencer.py
~~~~~~~~~~~~

Step sequencer for a training cycle.

Two modes are supported:
- forward-only: READY --forward--> DONE (terminal until reset)
- full-cycle:   READY --forward--> FORWARDED --backward--> BACKPROPAGATED
                --update--> READY

Legal moves live in ``TRANSITIONS``; any (mode, phase) pair missing from the
table has no next action, so backward can never be reached from READY.
"""

from enum import Enum
from typing import Dict, Optional, Tuple


class Mode(str, Enum):
    FORWARD_ONLY = 'forward'
    FULL_CYCLE = 'backward'


class Phase(str, Enum):
    READY = 'ready'
    FORWARDED = 'forwarded'
    BACKPROPAGATED = 'backpropagated'
    DONE = 'done'


class Action(str, Enum):
    FORWARD = 'forward'
    BACKWARD = 'backward'
    UPDATE = 'update'


TRANSITIONS: Dict[Tuple[Mode, Phase], Tuple[Action, Phase]] = {
    (Mode.FORWARD_ONLY, Phase.READY): (Action.FORWARD, Phase.DONE),
    (Mode.FULL_CYCLE, Phase.READY): (Action.FORWARD, Phase.FORWARDED),
    (Mode.FULL_CYCLE, Phase.FORWARDED): (Action.BACKWARD, Phase.BACKPROPAGATED),
    (Mode.FULL_CYCLE, Phase.BACKPROPAGATED): (Action.UPDATE, Phase.READY),
}

# Phases each mode can be in; used when the mode changes mid-cycle
_PHASE_MAP: Dict[Tuple[Mode, Phase], Phase] = {
    (Mode.FORWARD_ONLY, Phase.FORWARDED): Phase.DONE,
    (Mode.FORWARD_ONLY, Phase.BACKPROPAGATED): Phase.DONE,
    (Mode.FULL_CYCLE, Phase.DONE): Phase.FORWARDED,
}

_DESCRIPTIONS: Dict[Tuple[Mode, Phase], str] = {
    (Mode.FORWARD_ONLY, Phase.READY): 'Ready for forward pass',
    (Mode.FORWARD_ONLY, Phase.DONE): 'Forward pass completed',
    (Mode.FULL_CYCLE, Phase.READY): 'Ready for forward pass',
    (Mode.FULL_CYCLE, Phase.FORWARDED):
        'Forward pass done, ready for backpropagation',
    (Mode.FULL_CYCLE, Phase.BACKPROPAGATED):
        'Backpropagation done, ready to update weights',
}


def next_action(mode: Mode, phase: Phase) -> Optional[Tuple[Action, Phase]]:
    """
    Look up the phase to run next.

    Returns:
        (action, next_phase), or None when the cycle is finished
    """
    return TRANSITIONS.get((Mode(mode), Phase(phase)))


def coerce_phase(mode: Mode, phase: Phase) -> Phase:
    """Map ``phase`` onto the equivalent phase of ``mode``."""
    mode, phase = Mode(mode), Phase(phase)
    return _PHASE_MAP.get((mode, phase), phase)


def describe_phase(mode: Mode, phase: Phase) -> str:
    """Human readable description of the current step."""
    mode = Mode(mode)
    return _DESCRIPTIONS[(mode, coerce_phase(mode, phase))]
