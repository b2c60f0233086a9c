"""Inward commands accepted by a running simulation.

Commands are immutable messages. A scheduler drains them from its command
channel at the start of every tick and hands each to Simulation.handle().
"""

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Command:
    """Base class of all commands."""

    @property
    def name(self):
        return type(self).__name__


@dataclass(frozen=True)
class Start(Command):
    """Build a scene and start running it. Only valid while stopped."""
    scene: Any


@dataclass(frozen=True)
class Pause(Command):
    pass


@dataclass(frozen=True)
class Resume(Command):
    pass


@dataclass(frozen=True)
class StepOnce(Command):
    """Run exactly one tick. Only valid while paused."""


@dataclass(frozen=True)
class SetTimeScale(Command):
    """Simulated seconds per wall-clock second; math.inf runs unthrottled."""
    factor: float


@dataclass(frozen=True)
class InjectStimulus(Command):
    """Hold `current` (nA) on a compartment for `duration` (ms)."""
    compartment_id: Any
    current: float
    duration: float


@dataclass(frozen=True)
class LoadScene(Command):
    """Replace the running scene; the new one starts paused at t = 0."""
    scene: Any


@dataclass(frozen=True)
class Stop(Command):
    pass
