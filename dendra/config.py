"""Simulation configuration.

A SimulationConfig is a frozen bundle of numerical and scheduling
parameters. Units follow the engine conventions: ms, mV, um, uF/cm2,
Ohm*cm, nA.
"""

import math
from dataclasses import dataclass, asdict, fields, replace
from pathlib import Path

import yaml

from dendra.errors import InvalidValue
from dendra.utils import get_logger

LOG = get_logger("config")


@dataclass(frozen=True)
class SimulationConfig:
    """Numerical and scheduling parameters for one simulation.

    Parameters
    ----------
    dt : float
        Fixed logical timestep (ms).
    time_scale : float
        Simulated seconds per wall-clock second. math.inf runs unthrottled.
    batch_ticks : int
        Ticks run between two wall-clock pacing checks (threaded scheduler).
    max_ticks_per_frame : int
        Cap on ticks run by one cooperative frame.
    snapshot_every : int
        Decimation: publish one snapshot every N ticks.
    snapshot_capacity : int
        Bound of the outward snapshot channel (drop-oldest).
    command_capacity : int
        Bound of the inward command channel.
    spike_threshold : float
        Voltage that must be crossed upward to record a spike (mV).
    refractory : float
        Window after a spike during which the same compartment cannot
        spike again (ms).
    spike_history : int
        Number of recent spike events retained.
    synaptic_delay : float
        Default transmission delay of synapses (ms).
    v_init : float
        Default initial membrane voltage (mV).
    axial_resistivity : float
        Cytoplasmic resistivity (Ohm*cm).
    specific_capacitance : float
        Default membrane capacitance (uF/cm2).
    voltage_bound : float
        Absolute voltage beyond which integration is declared divergent (mV).
    stability_bound : float
        Warn when dt times the largest axial rate constant exceeds this.
    temperature : float
        Temperature used for Nernst reversal potentials (Celsius).
    """
    dt: float = 0.025
    time_scale: float = 0.01
    batch_ticks: int = 10
    max_ticks_per_frame: int = 1000
    snapshot_every: int = 1
    snapshot_capacity: int = 8
    command_capacity: int = 64
    spike_threshold: float = -20.0
    refractory: float = 1.0
    spike_history: int = 256
    synaptic_delay: float = 1.0
    v_init: float = -65.0
    axial_resistivity: float = 100.0
    specific_capacitance: float = 1.0
    voltage_bound: float = 1.0e4
    stability_bound: float = 1.0
    temperature: float = 6.3

    def __post_init__(self):
        for name in ("dt", "refractory", "axial_resistivity",
                     "specific_capacitance", "voltage_bound"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0):
                raise InvalidValue(f"config.{name} must be positive, got {value!r}")
        if not self.time_scale > 0:
            raise InvalidValue(f"config.time_scale must be positive, got {self.time_scale!r}")
        for name in ("batch_ticks", "max_ticks_per_frame", "snapshot_every",
                     "snapshot_capacity", "command_capacity", "spike_history"):
            if getattr(self, name) < 1:
                raise InvalidValue(f"config.{name} must be at least 1")
        if self.synaptic_delay < 0:
            raise InvalidValue("config.synaptic_delay must be non-negative")

    def with_overrides(self, **kwargs):
        """A copy of this config with some fields replaced."""
        return replace(self, **kwargs)

    def to_dict(self):
        return asdict(self)


def load_config(path, **overrides):
    """Load a SimulationConfig from a YAML file.

    Unknown keys are reported and ignored; keyword overrides win over the file.
    """
    with open(Path(path), "r") as f:
        raw = yaml.safe_load(f) or {}

    known = {f.name for f in fields(SimulationConfig)}
    unknown = sorted(set(raw) - known)
    if unknown:
        LOG.warning("Ignoring unknown config keys in %s: %s", path, unknown)

    values = {k: v for k, v in raw.items() if k in known}
    values.update(overrides)
    return SimulationConfig(**values)
