"""Scene records: the parsed, transport-independent shape of a scene.

A Scene is an ordered sequence of compartment records plus synapse and
stimulator records. Records hold raw values exactly as loaded; validation
and unit conversion happen when the model is built.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True)
class CompartmentRecord:
    """One cylindrical compartment.

    Parameters
    ----------
    id : hashable
        Scene-unique compartment id.
    parent_id : hashable or None
        Id of the parent compartment; None for a neuron's root.
    length, radius : float
        Geometry (um).
    capacitance : float, optional
        Specific membrane capacitance (uF/cm2). Config default if None.
    channels : tuple
        Channel entries (preset names, mappings or ChannelSpec).
    initial_voltage : float, optional
        Starting voltage (mV). Config default if None.
    neuron_id : str, optional
        UUID of the neuron; only read on root compartments.
    name : str, optional
        Display name; on a root it names the neuron.
    """
    id: Any
    parent_id: Any = None
    length: float = None
    radius: float = None
    capacitance: Optional[float] = None
    channels: tuple = field(default_factory=tuple)
    initial_voltage: Optional[float] = None
    neuron_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_root(self):
        return self.parent_id is None


@dataclass(frozen=True)
class SynapseRecord:
    """A chemical synapse between two compartments.

    Parameters
    ----------
    id : hashable
    pre_compartment_id, post_compartment_id : hashable
    weight : float
        Peak conductance of a single event (uS).
    rise_tau, decay_tau : float
        Dual-exponential time constants (ms).
    reversal_potential : float
        mV.
    delay : float, optional
        Transmission delay (ms). Config default if None.
    """
    id: Any
    pre_compartment_id: Any
    post_compartment_id: Any
    weight: float
    rise_tau: float
    decay_tau: float
    reversal_potential: float
    delay: Optional[float] = None


@dataclass(frozen=True)
class StimulatorRecord:
    """A periodic current source attached to a compartment.

    Parameters
    ----------
    compartment_id : hashable
    period, onset, offset : float
        Envelope (ms): within each period the shape is "on" between onset
        and offset.
    shape : dict
        {"type": "square" | "linear_ramp" | "frequency_ramp", ...currents (nA)}
    """
    compartment_id: Any
    period: float
    onset: float
    offset: float
    shape: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Scene:
    """A complete scene description."""
    compartments: tuple = field(default_factory=tuple)
    synapses: tuple = field(default_factory=tuple)
    stimulators: tuple = field(default_factory=tuple)
    name: str = "scene"

    @property
    def n_compartments(self):
        return len(self.compartments)

    @property
    def n_synapses(self):
        return len(self.synapses)

    def summary(self):
        return (f"Scene {self.name!r}: {self.n_compartments} compartments, "
                f"{self.n_synapses} synapses, {len(self.stimulators)} stimulators")
