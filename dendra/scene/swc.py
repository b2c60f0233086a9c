"""Read SWC morphology files into scenes.

SWC is the standard plain-text reconstruction format: one sample per line,
    id  type  x  y  z  radius  parent
with parent -1 for roots and '#' comments. Each sample becomes one
compartment whose length is the distance to its parent sample (a soma or
root sample gets its diameter as length). Channels are assigned by SWC
type code.
"""

import math

import numpy as np
import pandas as pd

from dendra.channels.library import HH_CHANNELS
from dendra.errors import InvalidValue, MissingField
from dendra.morphology.records import CompartmentRecord, Scene
from dendra.utils import get_logger, partial

LOG = get_logger("scene.swc")

SWC_COLUMNS = ["id", "type", "x", "y", "z", "radius", "parent"]

SOMA, AXON, BASAL_DENDRITE, APICAL_DENDRITE = 1, 2, 3, 4

SEGMENT_TYPES = {
    0: "undefined",
    SOMA: "soma",
    AXON: "axon",
    BASAL_DENDRITE: "basal_dendrite",
    APICAL_DENDRITE: "apical_dendrite",
}

DEFAULT_CHANNELS = {
    SOMA: HH_CHANNELS,
    AXON: HH_CHANNELS,
    BASAL_DENDRITE: ("leak",),
    APICAL_DENDRITE: ("leak",),
}

_read_table = partial(pd.read_csv, sep=r"\s+", comment="#", header=None)


def read_swc_table(path_or_buffer):
    """Read an SWC file into a DataFrame with SWC_COLUMNS."""
    table = _read_table(path_or_buffer)
    if table.shape[1] < len(SWC_COLUMNS):
        raise MissingField(f"SWC needs {len(SWC_COLUMNS)} columns, found {table.shape[1]}")
    table = table.iloc[:, :len(SWC_COLUMNS)].copy()
    table.columns = SWC_COLUMNS
    return table.astype({"id": np.int64, "type": np.int64, "parent": np.int64})


def swc_to_scene(table, name="swc", channels_by_type=None, default_channels=("leak",),
                 min_radius=0.1):
    """Convert an SWC table to a Scene.

    Parameters
    ----------
    table : pd.DataFrame
        Output of read_swc_table().
    name : str
        Scene name; also names the neuron(s).
    channels_by_type : dict, optional
        SWC type code -> channel entries. Defaults to HH channels on soma
        and axon, passive leak on dendrites.
    default_channels : tuple
        Channels for type codes absent from channels_by_type.
    min_radius : float
        Radii below this (um) are raised to it; some reconstructions carry
        zero radii on terminal samples.
    """
    channels_by_type = channels_by_type or DEFAULT_CHANNELS
    positions = {row.id: (row.x, row.y, row.z) for row in table.itertuples()}

    records = []
    for row in table.itertuples():
        radius = max(float(row.radius), min_radius)
        parent = int(row.parent)
        has_parent = parent != -1
        if has_parent and parent not in positions:
            # left for build_model to report as a dangling reference
            length = 2.0 * radius
        elif has_parent and row.type != SOMA:
            length = math.dist(positions[row.id], positions[parent])
        else:
            length = 2.0 * radius
        if length <= 0.0:
            length = 2.0 * radius
        records.append(CompartmentRecord(
            id=int(row.id),
            parent_id=parent if has_parent else None,
            length=length,
            radius=radius,
            channels=tuple(channels_by_type.get(int(row.type), default_channels)),
            name=name if not has_parent else SEGMENT_TYPES.get(int(row.type)),
        ))

    n_roots = sum(1 for r in records if r.is_root)
    if n_roots == 0:
        raise InvalidValue(f"SWC {name!r} has no root sample (parent -1)")
    LOG.info("SWC %s: %d samples, %d roots", name, len(records), n_roots)
    return Scene(compartments=tuple(records), name=name)


def read_swc(path_or_buffer, name="swc", channels_by_type=None):
    """Read an SWC file into a Scene."""
    return swc_to_scene(read_swc_table(path_or_buffer), name=name,
                        channels_by_type=channels_by_type)
