"""Tests for snapshot-stream analysis."""

from types import MappingProxyType

import numpy as np
import pandas as pd
import pytest

from dendra.simulation import Snapshot
from dendra.simulation.analysis import (
    voltage_traces, spike_table, firing_rates, interspike_intervals,
)


@pytest.fixture
def snapshots():
    def snap(k, va, vb, spikes=()):
        return Snapshot(tick_index=k, sim_time=k * 0.5,
                        compartment_voltages=MappingProxyType({"a": va, "b": vb}),
                        spikes=tuple(spikes))
    return [
        snap(0, -0.065, -0.065),
        snap(1, -0.030, -0.064, [("a", 0.5)]),
        snap(2, 0.020, -0.060),
        snap(3, -0.070, -0.050, [("a", 1.5), ("b", 1.5)]),
        snap(4, -0.068, -0.066, [("a", 2.0)]),
    ]


class TestVoltageTraces:

    def test_wide_frame_in_millivolts(self, snapshots):
        df = voltage_traces(snapshots)
        assert list(df.index) == [0.0, 0.5, 1.0, 1.5, 2.0]
        assert df.loc[1.0, "a"] == pytest.approx(20.0)
        assert df["tick_index"].tolist() == [0, 1, 2, 3, 4]

    def test_volts_and_column_subset(self, snapshots):
        df = voltage_traces(snapshots, compartment_ids=["b"], millivolts=False)
        assert "a" not in df.columns
        assert df.loc[0.0, "b"] == pytest.approx(-0.065)

    def test_empty(self):
        assert voltage_traces([]).empty


class TestSpikes:

    def test_spike_table(self, snapshots):
        df = spike_table(snapshots)
        assert list(df.columns) == ["compartment_id", "time"]
        assert df["time"].tolist() == [0.5, 1.5, 1.5, 2.0]

    def test_empty_spike_table(self):
        df = spike_table([])
        assert df.empty
        assert list(df.columns) == ["compartment_id", "time"]

    def test_firing_rates(self, snapshots):
        rates = firing_rates(spike_table(snapshots), duration=1000.0,
                             compartment_ids=["a", "b", "c"])
        assert rates.to_dict() == {"a": 3.0, "b": 1.0, "c": 0.0}

    def test_interspike_intervals(self, snapshots):
        isi = interspike_intervals(spike_table(snapshots), "a")
        np.testing.assert_allclose(isi, [1.0, 0.5])
