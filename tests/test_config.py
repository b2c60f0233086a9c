"""Tests for simulation configuration."""

import math

import pytest

from dendra.config import SimulationConfig, load_config
from dendra.errors import InvalidValue


class TestSimulationConfig:

    def test_defaults(self):
        config = SimulationConfig()
        assert config.dt == 0.025
        assert config.snapshot_every == 1
        assert config.v_init == -65.0

    def test_frozen(self):
        config = SimulationConfig()
        with pytest.raises(AttributeError):
            config.dt = 1.0

    def test_with_overrides(self):
        config = SimulationConfig().with_overrides(dt=0.1, time_scale=math.inf)
        assert config.dt == 0.1
        assert math.isinf(config.time_scale)
        assert config.to_dict()["dt"] == 0.1

    @pytest.mark.parametrize("kwargs", [
        {"dt": 0.0}, {"dt": -1.0}, {"time_scale": 0.0}, {"snapshot_every": 0},
        {"snapshot_capacity": 0}, {"synaptic_delay": -1.0}, {"refractory": math.nan},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(InvalidValue):
            SimulationConfig(**kwargs)


class TestLoadConfig:

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "sim.yaml"
        path.write_text("dt: 0.05\nsnapshot_every: 4\nunknown_key: 1\n")
        config = load_config(path)
        assert config.dt == 0.05
        assert config.snapshot_every == 4

    def test_overrides_win(self, tmp_path):
        path = tmp_path / "sim.yaml"
        path.write_text("dt: 0.05\n")
        assert load_config(path, dt=0.01).dt == 0.01

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == SimulationConfig()
