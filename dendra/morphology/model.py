"""The compartment graph built from a scene.

Compartments live in an arena addressed by dense integer index, in scene
record order. Parent/child relations, synapse endpoints and stimulator
targets are stored as indices; the scene id of each compartment is kept
for lookups by external collaborators (picking, plotting).

build_model() validates the whole scene before returning anything: a
scene with a dangling reference, a parent cycle, a missing field or an
invalid value is rejected wholesale with a SceneError.
"""

import math
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

import numpy as np

from dendra.channels.library import parse_channel
from dendra.config import SimulationConfig
from dendra.errors import (
    Cycle, DanglingReference, DuplicateId, InvalidValue, MissingField,
    UnknownCompartment,
)
from dendra.utils import get_logger

LOG = get_logger("morphology.model")

NEURON_NAMESPACE = uuid.UUID("6f1c2d7e-3b7a-4f0e-9a51-2c8d0f4e5a10")


@dataclass(frozen=True)
class Compartment:
    """A compartment resolved into the arena.

    Attributes
    ----------
    index : int
        Dense arena index.
    id : hashable
        Scene id.
    parent : int or None
        Arena index of the parent.
    children : tuple of int
        Arena indices of the children, in scene order.
    length, radius : float
        um.
    area : float
        Lateral membrane area (cm2).
    capacitance : float
        Total membrane capacitance (nF).
    channels : tuple of ChannelSpec
    initial_voltage : float
        mV.
    neuron : int
        Index of the owning neuron.
    name : str, optional
    """
    index: int
    id: Any
    parent: Optional[int]
    children: tuple
    length: float
    radius: float
    area: float
    capacitance: float
    channels: tuple
    initial_voltage: float
    neuron: int
    name: Optional[str] = None

    @property
    def is_root(self):
        return self.parent is None


@dataclass(frozen=True)
class Neuron:
    """A tree of compartments hanging from one root."""
    uuid: uuid.UUID
    name: str
    root: int
    compartments: tuple

    @property
    def n_compartments(self):
        return len(self.compartments)


@dataclass(frozen=True)
class SynapseDef:
    """A synapse with endpoints resolved to arena indices."""
    index: int
    id: Any
    pre: int
    post: int
    weight: float
    rise_tau: float
    decay_tau: float
    reversal: float
    delay: float


@dataclass(frozen=True)
class StimulatorDef:
    """A stimulator record with its target resolved to an arena index."""
    target: int
    record: Any


@dataclass
class Model:
    """Immutable-topology compartment graph.

    Attributes
    ----------
    compartments : list of Compartment
    neurons : list of Neuron
    synapses : list of SynapseDef
    stimulators : list of StimulatorDef
    id_to_idx : dict
        Scene id -> arena index.
    edges : np.ndarray
        Axial edges (parent, child), shape (n_edges, 2).
    g_axial : np.ndarray
        Axial conductance per edge (uS).
    """
    compartments: list
    neurons: list
    synapses: list = field(default_factory=list)
    stimulators: list = field(default_factory=list)
    id_to_idx: dict = field(default_factory=dict)
    edges: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), dtype=np.int64))
    g_axial: np.ndarray = field(default_factory=lambda: np.zeros(0))
    name: str = "scene"

    @property
    def n_compartments(self):
        return len(self.compartments)

    @property
    def n_synapses(self):
        return len(self.synapses)

    @property
    def ids(self):
        """Scene ids by arena index."""
        return [c.id for c in self.compartments]

    @property
    def capacitance(self):
        """Total capacitance per compartment (nF)."""
        return np.array([c.capacitance for c in self.compartments], dtype=np.float64)

    @property
    def initial_voltages(self):
        return np.array([c.initial_voltage for c in self.compartments], dtype=np.float64)

    def index_of(self, compartment_id):
        """Arena index of a scene id."""
        try:
            return self.id_to_idx[compartment_id]
        except KeyError:
            raise UnknownCompartment(f"No compartment with id {compartment_id!r}")

    def compartment(self, compartment_id):
        """Look up a compartment by scene id."""
        return self.compartments[self.index_of(compartment_id)]

    def parent(self, index):
        return self.compartments[index].parent

    def children(self, index):
        return self.compartments[index].children

    def neighbors(self, index):
        """Arena indices axially adjacent to a compartment."""
        comp = self.compartments[index]
        return ((comp.parent,) if comp.parent is not None else ()) + comp.children

    def neuron_of(self, compartment_id):
        return self.neurons[self.compartment(compartment_id).neuron]

    def summary(self):
        lines = [
            f"Model {self.name!r}: {len(self.neurons)} neurons, "
            f"{self.n_compartments} compartments, {self.n_synapses} synapses",
        ]
        for neuron in self.neurons:
            lines.append(f"  {neuron.name}: {neuron.n_compartments} compartments "
                         f"(root {self.compartments[neuron.root].id!r})")
        return "\n".join(lines)


# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------

def lateral_area(length, radius):
    """Lateral surface of a cylinder, um -> cm2."""
    return 2.0 * math.pi * radius * length * 1.0e-8


def half_cylinder_resistance(length, radius, resistivity):
    """Axial resistance from the end to the center of a cylinder (MOhm)."""
    length_cm = 0.5 * length * 1.0e-4
    radius_cm = radius * 1.0e-4
    ohms = resistivity * length_cm / (math.pi * radius_cm ** 2)
    return ohms * 1.0e-6


def axial_conductance(a, b, resistivity):
    """Conductance (uS) between the centers of two adjacent compartments.

    The two half-cylinders are in series.
    """
    r_total = (half_cylinder_resistance(a.length, a.radius, resistivity)
               + half_cylinder_resistance(b.length, b.radius, resistivity))
    return 1.0 / r_total


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _positive(value, where):
    if value is None:
        raise MissingField(f"{where} is required", record=where)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidValue(f"{where} must be a number, got {value!r}", record=where)
    if not (math.isfinite(number) and number > 0):
        raise InvalidValue(f"{where} must be positive and finite, got {value!r}",
                           record=where)
    return number


def _finite(value, where):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidValue(f"{where} must be a number, got {value!r}", record=where)
    if not math.isfinite(number):
        raise InvalidValue(f"{where} must be finite, got {value!r}", record=where)
    return number


def _key(value, where):
    """An id or reference usable as a lookup key."""
    try:
        hash(value)
    except TypeError:
        raise InvalidValue(f"{where} must be a string or number, got {value!r}",
                           record=where)
    return value


def _check_unique(records, what):
    seen = set()
    for rec in records:
        if rec.id is None:
            raise MissingField(f"{what} record without an id", record=what)
        _key(rec.id, f"{what} id")
        if rec.id in seen:
            raise DuplicateId(f"Duplicate {what} id {rec.id!r}", record=f"{what} {rec.id!r}")
        seen.add(rec.id)


def _check_acyclic(records, id_to_idx):
    """Walk each parent chain; a chain revisiting a node on the current path is a cycle."""
    state = [0] * len(records)  # 0 unvisited, 1 on current path, 2 done
    for start in range(len(records)):
        path = []
        i = start
        while i is not None and state[i] == 0:
            state[i] = 1
            path.append(i)
            parent_id = records[i].parent_id
            i = id_to_idx[parent_id] if parent_id is not None else None
        if i is not None and state[i] == 1:
            cycle = [records[j].id for j in path[path.index(i):]]
            raise Cycle(f"Parent cycle through compartments {cycle!r}",
                        record=f"compartment {records[i].id!r}")
        for j in path:
            state[j] = 2


def _neuron_identity(record, scene_name):
    if record.neuron_id is not None:
        try:
            return uuid.UUID(str(record.neuron_id))
        except ValueError:
            raise InvalidValue(f"compartment {record.id!r}: neuron_id "
                               f"{record.neuron_id!r} is not a UUID",
                               record=f"compartment {record.id!r}")
    return uuid.uuid5(NEURON_NAMESPACE, f"{scene_name}/{record.id!r}")


# ---------------------------------------------------------------------------
# Build
# ---------------------------------------------------------------------------

def build_model(scene, config=None):
    """Build and validate the compartment graph of a scene.

    Parameters
    ----------
    scene : Scene
    config : SimulationConfig, optional

    Returns
    -------
    Model

    Raises
    ------
    SceneError
        DanglingReference, Cycle, MissingField, DuplicateId or InvalidValue.
    """
    config = config or SimulationConfig()
    records = list(scene.compartments)

    _check_unique(records, "compartment")
    id_to_idx = {rec.id: i for i, rec in enumerate(records)}

    for rec in records:
        if (rec.parent_id is not None
                and _key(rec.parent_id, f"compartment {rec.id!r}.parent_id") not in id_to_idx):
            raise DanglingReference(
                f"compartment {rec.id!r} declares unknown parent {rec.parent_id!r}",
                record=f"compartment {rec.id!r}")
    _check_acyclic(records, id_to_idx)

    children = [[] for _ in records]
    for i, rec in enumerate(records):
        if rec.parent_id is not None:
            children[id_to_idx[rec.parent_id]].append(i)

    # Neurons: one per root, membership by walking down from the root.
    neuron_of = [None] * len(records)
    neurons = []
    for root, rec in enumerate(records):
        if not rec.is_root:
            continue
        members = []
        queue = deque([root])
        while queue:
            i = queue.popleft()
            neuron_of[i] = len(neurons)
            members.append(i)
            queue.extend(children[i])
        neurons.append(Neuron(
            uuid=_neuron_identity(rec, scene.name),
            name=rec.name or f"neuron-{rec.id}",
            root=root,
            compartments=tuple(members),
        ))

    compartments = []
    for i, rec in enumerate(records):
        where = f"compartment {rec.id!r}"
        length = _positive(rec.length, f"{where}.length")
        radius = _positive(rec.radius, f"{where}.radius")
        specific_c = _positive(
            rec.capacitance if rec.capacitance is not None else config.specific_capacitance,
            f"{where}.capacitance")
        v0 = _finite(rec.initial_voltage if rec.initial_voltage is not None
                     else config.v_init, f"{where}.initial_voltage")
        channels = tuple(parse_channel(ch, f"{where}.channels[{k}]", config.temperature)
                         for k, ch in enumerate(rec.channels))
        area = lateral_area(length, radius)
        compartments.append(Compartment(
            index=i,
            id=rec.id,
            parent=id_to_idx[rec.parent_id] if rec.parent_id is not None else None,
            children=tuple(children[i]),
            length=length,
            radius=radius,
            area=area,
            # uF/cm2 * cm2 = uF -> nF
            capacitance=specific_c * area * 1.0e3,
            channels=channels,
            initial_voltage=v0,
            neuron=neuron_of[i],
            name=rec.name,
        ))

    edges = [(c.parent, c.index) for c in compartments if c.parent is not None]
    g_axial = [axial_conductance(compartments[p], compartments[c], config.axial_resistivity)
               for p, c in edges]

    synapses = []
    _check_unique(scene.synapses, "synapse")
    for k, rec in enumerate(scene.synapses):
        where = f"synapse {rec.id!r}"
        for end in (rec.pre_compartment_id, rec.post_compartment_id):
            if _key(end, f"{where} endpoint") not in id_to_idx:
                raise DanglingReference(f"{where} refers to unknown compartment {end!r}",
                                        record=where)
        weight = _finite(rec.weight, f"{where}.weight")
        if weight < 0:
            raise InvalidValue(f"{where}.weight must be non-negative", record=where)
        delay = rec.delay if rec.delay is not None else config.synaptic_delay
        delay = _finite(delay, f"{where}.delay")
        if delay < 0:
            raise InvalidValue(f"{where}.delay must be non-negative", record=where)
        rise_tau = _positive(rec.rise_tau, f"{where}.rise_tau")
        decay_tau = _positive(rec.decay_tau, f"{where}.decay_tau")
        if rise_tau > decay_tau:
            raise InvalidValue(f"{where}: rise_tau {rise_tau} exceeds decay_tau {decay_tau}",
                               record=where)
        synapses.append(SynapseDef(
            index=k,
            id=rec.id,
            pre=id_to_idx[rec.pre_compartment_id],
            post=id_to_idx[rec.post_compartment_id],
            weight=weight,
            rise_tau=rise_tau,
            decay_tau=decay_tau,
            reversal=_finite(rec.reversal_potential, f"{where}.reversal_potential"),
            delay=delay,
        ))

    stimulators = []
    for rec in scene.stimulators:
        if _key(rec.compartment_id, "stimulator.compartment_id") not in id_to_idx:
            raise DanglingReference(
                f"stimulator refers to unknown compartment {rec.compartment_id!r}",
                record="stimulator")
        stimulators.append(StimulatorDef(target=id_to_idx[rec.compartment_id], record=rec))

    model = Model(
        compartments=compartments,
        neurons=neurons,
        synapses=synapses,
        stimulators=stimulators,
        id_to_idx=id_to_idx,
        edges=np.asarray(edges, dtype=np.int64).reshape(-1, 2),
        g_axial=np.asarray(g_axial, dtype=np.float64),
        name=scene.name,
    )
    LOG.info("Built model %s: %d neurons, %d compartments, %d synapses",
             scene.name, len(neurons), len(compartments), len(synapses))
    return model
