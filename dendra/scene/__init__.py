"""scene — Turning loaded scene descriptions into records.

Transport (local file, network fetch) is the caller's concern; this
subpackage parses the resulting mappings, byte streams, DataFrames and
SWC morphologies into a Scene.
"""

from .io import (
    parse_scene,
    parse_compartment,
    parse_synapse,
    parse_stimulator,
    read_scene,
    read_scene_stream,
    load_scene,
    write_scene,
    scene_to_dict,
    scene_from_frames,
    scene_to_frames,
)
from .swc import read_swc, read_swc_table, swc_to_scene
