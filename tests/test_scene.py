"""Tests for the scene module.

Parsing mappings, YAML/JSON text and streams, DataFrames and SWC
morphologies into scenes.
"""

import io

import numpy as np
import pandas as pd
import pytest

from dendra.channels.library import HH_CHANNELS
from dendra.errors import InvalidValue, MissingField
from dendra.morphology import Scene, StimulatorRecord, build_model
from dendra.scene import (
    parse_scene, read_scene, read_scene_stream, load_scene, write_scene,
    scene_to_dict, scene_from_frames, scene_to_frames,
    read_swc, read_swc_table, swc_to_scene,
)


YAML_SCENE = """
name: two-cell
compartments:
  - {id: soma, length: 20, radius: 10, channels: [hh_na, hh_k, hh_leak]}
  - {id: dend, parent_id: soma, length: 200, radius: 0.5, channels: [leak]}
  - id: clock
    length: 10
    radius: 5
    channels:
      - {preset: leak, g_max: 10.0}
synapses:
  - {id: s1, pre_compartment_id: clock, post_compartment_id: soma,
     weight: 0.1, rise_tau: 0.2, decay_tau: 2.0, reversal_potential: 0.0, delay: 1.0}
stimulators:
  - {compartment_id: clock, period: 2.5, onset: 0, offset: 0.25,
     shape: {type: square, on_current: 5.0, off_current: 0.0}}
"""

SWC_TEXT = """# a tiny neuron
1 1 0.0 0.0 0.0 5.0 -1
2 3 0.0 10.0 0.0 0.5 1
3 3 0.0 30.0 0.0 0.5 2
4 2 0.0 -20.0 0.0 0.0 1
"""


@pytest.fixture
def raw_scene():
    return {
        "name": "mapping",
        "compartments": [
            {"id": 1, "length": 20.0, "radius": 10.0, "channels": ["leak"]},
            {"id": 2, "parent_id": 1, "length": 100.0, "radius": 1.0},
        ],
        "connectivity": [
            {"id": "s", "pre_compartment_id": 1, "post_compartment_id": 2,
             "weight": 0.01, "rise_tau": 0.5, "decay_tau": 3.0,
             "reversal_potential": -70.0},
        ],
    }


# ---------------------------------------------------------------------------
# Mappings and text
# ---------------------------------------------------------------------------

class TestParse:

    def test_parse_mapping(self, raw_scene):
        scene = parse_scene(raw_scene)
        assert scene.name == "mapping"
        assert scene.n_compartments == 2
        assert scene.compartments[1].parent_id == 1
        assert scene.compartments[1].channels == ()
        assert scene.synapses[0].delay is None

    def test_missing_compartment_field(self):
        with pytest.raises(MissingField):
            parse_scene({"compartments": [{"id": "a", "radius": 1.0}]})

    def test_missing_compartments(self):
        with pytest.raises(MissingField):
            parse_scene({"synapses": []})

    def test_not_a_mapping(self):
        with pytest.raises(InvalidValue):
            parse_scene([1, 2, 3])

    def test_read_yaml(self):
        scene = read_scene(YAML_SCENE)
        assert scene.name == "two-cell"
        assert [c.id for c in scene.compartments] == ["soma", "dend", "clock"]
        assert scene.stimulators[0].shape["type"] == "square"
        model = build_model(scene)
        assert model.compartment("clock").channels[0].g_max == 10.0

    def test_read_bytes_stream(self):
        scene = read_scene_stream(io.BytesIO(YAML_SCENE.encode()), name="renamed")
        assert scene.name == "renamed"

    def test_read_json(self, raw_scene):
        import json
        scene = read_scene(json.dumps(raw_scene), ftype="json")
        assert scene.n_synapses == 1

    def test_malformed_text(self):
        with pytest.raises(InvalidValue):
            read_scene("{not: [valid", ftype="yaml")

    @pytest.mark.parametrize("raw", [
        {"compartments": ["soma"]},
        {"compartments": "soma"},
        {"compartments": {"id": "soma"}},
        {"compartments": [{"id": "a", "length": 1, "radius": 1, "channels": 5}]},
        {"compartments": [{"id": "a", "length": 1, "radius": 1, "channels": "leak"}]},
        {"compartments": [], "synapses": ["s1"]},
        {"compartments": [], "stimulators": [{"compartment_id": "a", "period": 1,
                                              "offset": 0.5, "shape": ["square"]}]},
    ])
    def test_malformed_entries(self, raw):
        with pytest.raises(InvalidValue):
            parse_scene(raw)

    def test_invalid_utf8(self):
        data = b"compartments:\n  - {id: \xff\xfe, length: 1, radius: 1}\n"
        with pytest.raises(InvalidValue):
            read_scene(data)

    def test_unsupported_format(self):
        with pytest.raises(InvalidValue):
            read_scene("", ftype="xml")

    def test_dict_roundtrip(self):
        scene = read_scene(YAML_SCENE)
        again = parse_scene(scene_to_dict(scene))
        assert again == scene

    @pytest.mark.parametrize("suffix", [".yaml", ".json"])
    def test_write_and_load(self, tmp_path, suffix):
        scene = read_scene(YAML_SCENE)
        path = tmp_path / f"scene{suffix}"
        write_scene(scene, path)
        assert load_scene(path) == scene


# ---------------------------------------------------------------------------
# DataFrames
# ---------------------------------------------------------------------------

class TestFrames:

    def test_scene_from_frames(self):
        compartments = pd.DataFrame({
            "id": ["soma", "dend"],
            "parent_id": [np.nan, "soma"],
            "length": [20.0, 100.0],
            "radius": [10.0, 1.0],
        })
        synapses = pd.DataFrame({
            "id": ["s"], "pre_compartment_id": ["soma"], "post_compartment_id": ["dend"],
            "weight": [0.01], "rise_tau": [0.2], "decay_tau": [2.0],
            "reversal_potential": [0.0], "delay": [np.nan],
        })
        scene = scene_from_frames(compartments, synapses, name="frames")
        assert scene.compartments[0].parent_id is None
        assert scene.compartments[1].channels == ("leak",)
        assert scene.synapses[0].delay is None
        model = build_model(scene)
        assert model.n_compartments == 2

    def test_missing_column(self):
        with pytest.raises(MissingField):
            scene_from_frames(pd.DataFrame({"id": [1], "length": [1.0]}))

    def test_frames_with_stimulators(self):
        compartments = pd.DataFrame({"id": [1], "length": [10.0], "radius": [5.0]})
        stim = {"compartment_id": 1, "period": 5.0, "offset": 1.0,
                "shape": {"type": "square", "on_current": 1.0, "off_current": 0.0}}
        scene = scene_from_frames(compartments, stimulators=[stim])
        assert isinstance(scene.stimulators[0], StimulatorRecord)
        assert scene.stimulators[0].onset == 0.0

    def test_scene_to_frames(self):
        compartments, synapses = scene_to_frames(read_scene(YAML_SCENE))
        assert list(compartments["id"]) == ["soma", "dend", "clock"]
        assert len(synapses) == 1
        assert synapses.loc[0, "post_compartment_id"] == "soma"


# ---------------------------------------------------------------------------
# SWC
# ---------------------------------------------------------------------------

class TestSWC:

    def test_read_table(self):
        table = read_swc_table(io.StringIO(SWC_TEXT))
        assert list(table.columns) == ["id", "type", "x", "y", "z", "radius", "parent"]
        assert len(table) == 4

    def test_swc_scene(self):
        scene = read_swc(io.StringIO(SWC_TEXT), name="tiny")
        by_id = {c.id: c for c in scene.compartments}
        assert by_id[1].is_root
        assert by_id[1].length == pytest.approx(10.0)      # soma: diameter
        assert by_id[2].length == pytest.approx(10.0)
        assert by_id[3].length == pytest.approx(20.0)
        assert by_id[4].radius == pytest.approx(0.1)       # raised to min_radius
        assert by_id[1].channels == HH_CHANNELS
        assert by_id[4].channels == HH_CHANNELS
        assert by_id[2].channels == ("leak",)

    def test_swc_builds(self):
        model = build_model(read_swc(io.StringIO(SWC_TEXT), name="tiny"))
        assert len(model.neurons) == 1
        assert model.neurons[0].name == "tiny"
        assert model.n_compartments == 4

    def test_custom_channels(self):
        table = read_swc_table(io.StringIO(SWC_TEXT))
        scene = swc_to_scene(table, channels_by_type={1: ("squid_na", "squid_k", "leak")})
        assert scene.compartments[0].channels == ("squid_na", "squid_k", "leak")
        assert scene.compartments[1].channels == ("leak",)

    def test_too_few_columns(self):
        with pytest.raises(MissingField):
            read_swc_table(io.StringIO("1 1 0 0 0\n"))

    def test_load_by_suffix(self, tmp_path):
        path = tmp_path / "cell.swc"
        path.write_text(SWC_TEXT)
        scene = load_scene(path)
        assert scene.name == "cell"
        assert isinstance(scene, Scene)
