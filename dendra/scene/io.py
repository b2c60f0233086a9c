"""Parse scene descriptions into records.

Fetching a scene (from disk, a URL, a drag-and-drop) is the caller's
business; these functions take the resulting mapping, byte stream, file
path or DataFrames and produce a Scene. Missing required fields raise
MissingField; all other validation happens in build_model().

Scene mapping layout:

    name: two-cell
    compartments:
      - {id: soma, length: 20, radius: 10, channels: [hh_na, hh_k, hh_leak]}
      - {id: dend, parent_id: soma, length: 200, radius: 0.5, channels: [leak]}
    synapses:
      - {id: s1, pre_compartment_id: ..., post_compartment_id: ...,
         weight: 0.01, rise_tau: 0.2, decay_tau: 2.0, reversal_potential: 0.0}
    stimulators:
      - {compartment_id: soma, period: 50, onset: 5, offset: 10,
         shape: {type: square, on_current: 0.5, off_current: 0.0}}
"""

import json
from collections.abc import Mapping
from pathlib import Path

import numpy as np
import pandas as pd
import yaml

from dendra.errors import MissingField, InvalidValue
from dendra.morphology.records import (
    CompartmentRecord, SynapseRecord, StimulatorRecord, Scene,
)
from dendra.utils import get_logger

LOG = get_logger("scene.io")


# ---------------------------------------------------------------------------
# Mapping -> records
# ---------------------------------------------------------------------------

def _require(raw, key, where):
    if key not in raw or raw[key] is None:
        raise MissingField(f"{where} lacks required field {key!r}", record=where)
    return raw[key]


def _mapping(raw, where):
    if not isinstance(raw, Mapping):
        raise InvalidValue(f"{where} must be a mapping, got {type(raw).__name__}",
                           record=where)
    return raw


def _sequence(raw, where):
    """A list of entries; None counts as empty."""
    if raw is None:
        return ()
    if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, (list, tuple)):
        raise InvalidValue(f"{where} must be a list, got {type(raw).__name__}",
                           record=where)
    return tuple(raw)


def parse_compartment(raw):
    """CompartmentRecord from a mapping."""
    raw = _mapping(raw, "compartment")
    where = f"compartment {raw.get('id')!r}"
    channels = raw.get("channels", raw.get("channel_specs"))
    return CompartmentRecord(
        id=_require(raw, "id", "compartment"),
        parent_id=raw.get("parent_id"),
        length=_require(raw, "length", where),
        radius=_require(raw, "radius", where),
        capacitance=raw.get("capacitance"),
        channels=_sequence(channels, f"{where}.channels"),
        initial_voltage=raw.get("initial_voltage"),
        neuron_id=raw.get("neuron_id"),
        name=raw.get("name"),
    )


def parse_synapse(raw):
    """SynapseRecord from a mapping."""
    raw = _mapping(raw, "synapse")
    where = f"synapse {raw.get('id')!r}"
    return SynapseRecord(
        id=_require(raw, "id", "synapse"),
        pre_compartment_id=_require(raw, "pre_compartment_id", where),
        post_compartment_id=_require(raw, "post_compartment_id", where),
        weight=_require(raw, "weight", where),
        rise_tau=_require(raw, "rise_tau", where),
        decay_tau=_require(raw, "decay_tau", where),
        reversal_potential=_require(raw, "reversal_potential", where),
        delay=raw.get("delay"),
    )


def parse_stimulator(raw):
    """StimulatorRecord from a mapping."""
    raw = _mapping(raw, "stimulator")
    where = f"stimulator on {raw.get('compartment_id')!r}"
    return StimulatorRecord(
        compartment_id=_require(raw, "compartment_id", "stimulator"),
        period=_require(raw, "period", where),
        onset=raw.get("onset", 0.0),
        offset=_require(raw, "offset", where),
        shape=dict(_mapping(_require(raw, "shape", where), f"{where}.shape")),
    )


def parse_scene(raw, name=None):
    """Build a Scene from a plain mapping (as loaded from YAML or JSON).

    Parameters
    ----------
    raw : dict
        With "compartments" and optional "synapses" (alias
        "connectivity"), "stimulators" and "name".
    name : str, optional
        Overrides the mapping's name.
    """
    if not isinstance(raw, Mapping):
        raise InvalidValue(f"Scene must be a mapping, got {type(raw).__name__}")
    compartments = tuple(parse_compartment(c) for c in
                         _sequence(_require(raw, "compartments", "scene"),
                                   "scene.compartments"))
    synapses = tuple(parse_synapse(s) for s in
                     _sequence(raw.get("synapses", raw.get("connectivity")),
                               "scene.synapses"))
    stimulators = tuple(parse_stimulator(s) for s in
                        _sequence(raw.get("stimulators"), "scene.stimulators"))
    return Scene(
        compartments=compartments,
        synapses=synapses,
        stimulators=stimulators,
        name=name or raw.get("name", "scene"),
    )


def scene_to_dict(scene):
    """Inverse of parse_scene, for saving. ChannelSpec entries are written by name."""
    def _channel(ch):
        return ch if isinstance(ch, (str, dict)) else ch.name

    return {
        "name": scene.name,
        "compartments": [
            {k: v for k, v in {
                "id": c.id,
                "parent_id": c.parent_id,
                "length": c.length,
                "radius": c.radius,
                "capacitance": c.capacitance,
                "channels": [_channel(ch) for ch in c.channels],
                "initial_voltage": c.initial_voltage,
                "neuron_id": c.neuron_id,
                "name": c.name,
            }.items() if v is not None}
            for c in scene.compartments
        ],
        "synapses": [
            {k: v for k, v in vars(s).items() if v is not None}
            for s in scene.synapses
        ],
        "stimulators": [
            {"compartment_id": s.compartment_id, "period": s.period,
             "onset": s.onset, "offset": s.offset, "shape": dict(s.shape)}
            for s in scene.stimulators
        ],
    }


# ---------------------------------------------------------------------------
# Bytes and files
# ---------------------------------------------------------------------------

def _default_parsers():
    """File-type -> text parser mapping."""
    return {
        "yaml": yaml.safe_load,
        "yml": yaml.safe_load,
        "json": json.loads,
    }


def read_scene(data, ftype="yaml", name=None):
    """Parse a scene from a byte stream or string.

    Parameters
    ----------
    data : bytes or str
    ftype : str
        "yaml" or "json".
    """
    parsers = _default_parsers()
    if ftype not in parsers:
        raise InvalidValue(f"Unsupported scene format {ftype!r}; "
                           f"expected one of {sorted(parsers)}")
    try:
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        raw = parsers[ftype](data)
    except (UnicodeDecodeError, yaml.YAMLError, json.JSONDecodeError) as error:
        raise InvalidValue(f"Could not parse {ftype} scene: {error}")
    return parse_scene(raw, name=name)


def load_scene(path, name=None):
    """Load a scene file; YAML, JSON or SWC by suffix."""
    path = Path(path)
    ftype = path.suffix.lstrip(".").lower()
    if ftype == "swc":
        from dendra.scene.swc import read_swc
        return read_swc(path, name=name or path.stem)
    with open(path, "r") as f:
        text = f.read()
    scene = read_scene(text, ftype=ftype, name=name)
    LOG.info("Loaded %s", scene.summary())
    return scene


def write_scene(scene, path):
    """Write a scene to YAML or JSON by suffix."""
    path = Path(path)
    data = scene_to_dict(scene)
    with open(path, "w") as f:
        if path.suffix.lower() == ".json":
            json.dump(data, f, indent=2)
        else:
            yaml.safe_dump(data, f, sort_keys=False)


# ---------------------------------------------------------------------------
# DataFrames
# ---------------------------------------------------------------------------

def _none_if_missing(value):
    if value is None:
        return None
    if isinstance(value, float) and np.isnan(value):
        return None
    return value


def scene_from_frames(compartments, synapses=None, stimulators=(),
                      default_channels=("leak",), name="scene"):
    """Build a Scene from tabular records.

    Parameters
    ----------
    compartments : pd.DataFrame
        Must have: id, length, radius. Optional: parent_id (NaN for roots),
        capacitance, initial_voltage, channels (list per row), name.
    synapses : pd.DataFrame, optional
        Columns named as SynapseRecord fields.
    stimulators : sequence of StimulatorRecord or dict
    default_channels : tuple
        Channels for rows without a "channels" entry.
    """
    for column in ("id", "length", "radius"):
        if column not in compartments.columns:
            raise MissingField(f"compartments table lacks column {column!r}")

    records = []
    for row in compartments.to_dict(orient="records"):
        channels = row.get("channels")
        if channels is None or (isinstance(channels, float) and np.isnan(channels)):
            channels = default_channels
        records.append(CompartmentRecord(
            id=row["id"],
            parent_id=_none_if_missing(row.get("parent_id")),
            length=row["length"],
            radius=row["radius"],
            capacitance=_none_if_missing(row.get("capacitance")),
            channels=tuple(channels),
            initial_voltage=_none_if_missing(row.get("initial_voltage")),
            neuron_id=_none_if_missing(row.get("neuron_id")),
            name=_none_if_missing(row.get("name")),
        ))

    synapse_records = ()
    if synapses is not None and len(synapses) > 0:
        synapse_records = tuple(
            parse_synapse({k: _none_if_missing(v) for k, v in row.items()})
            for row in synapses.to_dict(orient="records")
        )

    stimulator_records = tuple(
        s if isinstance(s, StimulatorRecord) else parse_stimulator(s)
        for s in stimulators
    )
    return Scene(
        compartments=tuple(records),
        synapses=synapse_records,
        stimulators=stimulator_records,
        name=name,
    )


def scene_to_frames(scene):
    """Tabulate a scene's compartments and synapses.

    Returns
    -------
    (pd.DataFrame, pd.DataFrame)
    """
    compartments = pd.DataFrame([
        {"id": c.id, "parent_id": c.parent_id, "length": c.length,
         "radius": c.radius, "capacitance": c.capacitance,
         "channels": list(c.channels), "initial_voltage": c.initial_voltage,
         "name": c.name}
        for c in scene.compartments
    ])
    synapses = pd.DataFrame([vars(s) for s in scene.synapses],
                            columns=["id", "pre_compartment_id", "post_compartment_id",
                                     "weight", "rise_tau", "decay_tau",
                                     "reversal_potential", "delay"])
    return compartments, synapses


def read_scene_stream(stream, ftype="yaml", name=None):
    """Parse a scene from a text or binary file-like object."""
    return read_scene(stream.read(), ftype=ftype, name=name)
