"""Current injection into compartments.

Two kinds of sources feed the I_stim term of the cable equation:

- PeriodicStimulator: declared in the scene. Within every period the
  envelope is "on" between onset and offset; the shape decides the current
  inside and outside the envelope.
- InjectedStimulus: a constant current held for a fixed duration, added at
  run time by an inject_stimulus command.

Currents in nA (positive depolarizes), times in ms, frequencies in Hz.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np

from dendra.errors import InvalidValue, MissingField

SHAPE_FIELDS = {
    "square": ("on_current", "off_current"),
    "linear_ramp": ("start_current", "end_current", "off_current"),
    "frequency_ramp": ("amplitude", "offset_current", "start_frequency", "end_frequency"),
}


@dataclass(frozen=True)
class PeriodicStimulator:
    """A periodic current source.

    Attributes
    ----------
    target : int
        Compartment index.
    period, onset, offset : float
        Envelope (ms).
    kind : str
        One of SHAPE_FIELDS.
    params : dict
        Shape parameters, keyed as in SHAPE_FIELDS.
    """
    target: int
    period: float
    onset: float
    offset: float
    kind: str
    params: dict

    def envelope(self, t):
        """Time since onset within the current cycle, and completion in [0, 1].

        Completion outside [0, 1] means the envelope is off.
        """
        cycle_time = math.fmod(t, self.period)
        if cycle_time < 0:
            cycle_time += self.period
        elapsed = cycle_time - self.onset
        return elapsed, elapsed / (self.offset - self.onset)

    def current(self, t):
        """Injected current at time t (nA)."""
        elapsed, completion = self.envelope(t)
        on = 0.0 <= completion <= 1.0
        p = self.params

        if self.kind == "square":
            return p["on_current"] if on else p["off_current"]

        if self.kind == "linear_ramp":
            if not on:
                return p["off_current"]
            return p["start_current"] + completion * (p["end_current"] - p["start_current"])

        # frequency_ramp
        if not on:
            return p["offset_current"]
        frequency = p["start_frequency"] + completion * (p["end_frequency"] - p["start_frequency"])
        phase = 2.0 * math.pi * frequency * elapsed * 1.0e-3
        return p["amplitude"] * math.sin(phase) + p["offset_current"]


def build_stimulator(definition):
    """Validate a StimulatorDef and turn it into a PeriodicStimulator.

    Raises
    ------
    MissingField, InvalidValue
    """
    rec = definition.record
    where = f"stimulator on {rec.compartment_id!r}"

    envelope = {}
    for name in ("period", "onset", "offset"):
        value = getattr(rec, name)
        if value is None:
            raise MissingField(f"{where}: {name} is required", record=where)
        try:
            envelope[name] = float(value)
        except (TypeError, ValueError):
            raise InvalidValue(f"{where}: {name} must be a number, got {value!r}",
                               record=where)
    if not (math.isfinite(envelope["period"]) and envelope["period"] > 0):
        raise InvalidValue(f"{where}: period must be positive", record=where)
    if not 0.0 <= envelope["onset"] < envelope["offset"]:
        raise InvalidValue(f"{where}: need 0 <= onset < offset", record=where)

    if rec.shape is not None and not isinstance(rec.shape, Mapping):
        raise InvalidValue(f"{where}: shape must be a mapping", record=where)
    shape = dict(rec.shape or {})
    kind = shape.pop("type", None)
    if kind is None:
        raise MissingField(f"{where}: shape.type is required", record=where)
    if not isinstance(kind, str) or kind not in SHAPE_FIELDS:
        raise InvalidValue(f"{where}: unknown shape {kind!r}; "
                           f"expected one of {sorted(SHAPE_FIELDS)}", record=where)

    params = {}
    for name in SHAPE_FIELDS[kind]:
        if name not in shape:
            raise MissingField(f"{where}: shape.{name} is required", record=where)
        try:
            params[name] = float(shape[name])
        except (TypeError, ValueError):
            raise InvalidValue(f"{where}: shape.{name} must be a number", record=where)
        if not math.isfinite(params[name]):
            raise InvalidValue(f"{where}: shape.{name} must be finite", record=where)

    return PeriodicStimulator(target=definition.target, kind=kind, params=params,
                              **envelope)


@dataclass(frozen=True)
class InjectedStimulus:
    """Constant current into one compartment until `end` (ms, exclusive)."""
    target: int
    current: float
    end: float

    def active(self, t):
        return t < self.end


class StimulusSet:
    """All current sources of a running model.

    Parameters
    ----------
    stimulators : list of PeriodicStimulator
    n_compartments : int
    """

    def __init__(self, stimulators, n_compartments):
        self.stimulators = list(stimulators)
        self.n_compartments = n_compartments
        self.injected = []

    @classmethod
    def from_model(cls, model):
        return cls([build_stimulator(s) for s in model.stimulators], model.n_compartments)

    def inject(self, target, current, start, duration):
        """Hold `current` on compartment `target` for `duration` ms from `start`."""
        self.injected.append(InjectedStimulus(target, float(current), start + duration))

    def currents(self, t):
        """Total injected current per compartment at time t (nA).

        Expired injections are discarded.
        """
        i_stim = np.zeros(self.n_compartments, dtype=np.float64)
        for stim in self.stimulators:
            i_stim[stim.target] += stim.current(t)
        self.injected = [s for s in self.injected if s.active(t)]
        for stim in self.injected:
            i_stim[stim.target] += stim.current
        return i_stim
