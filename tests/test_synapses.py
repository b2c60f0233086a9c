"""Tests for the synapses module.

Spike detection with its refractory window, and dual-exponential synapses
with delayed, summating triggers.
"""

import numpy as np
import pytest

from dendra.morphology import CompartmentRecord, SynapseRecord, Scene, build_model
from dendra.synapses import SpikeDetector, SpikeEvent, SynapseBank, peak_factor, delay_in_ticks


DT = 0.025


@pytest.fixture
def pair_model():
    """Compartment 'a' synapses onto 'b' with a 1 ms delay."""
    scene = Scene(
        compartments=(
            CompartmentRecord(id="a", length=10.0, radius=5.0, channels=("leak",)),
            CompartmentRecord(id="b", length=10.0, radius=5.0, channels=("leak",)),
        ),
        synapses=(
            SynapseRecord(id="ab", pre_compartment_id="a", post_compartment_id="b",
                          weight=0.05, rise_tau=0.5, decay_tau=3.0,
                          reversal_potential=0.0, delay=1.0),
        ),
    )
    return build_model(scene)


def _single_event_trace(bank, n_ticks):
    trace = []
    for k in range(n_ticks):
        bank.deliver(k)
        trace.append(bank.conductance()[0])
        bank.decay()
    return np.array(trace)


# ---------------------------------------------------------------------------
# Spike detection
# ---------------------------------------------------------------------------

class TestSpikeDetector:

    def test_upward_crossing(self):
        det = SpikeDetector(["a", "b"], threshold=-20.0)
        spiked, events = det.detect(np.array([-30.0, -30.0]), np.array([-10.0, -25.0]), 1.0)
        assert spiked.tolist() == [0]
        assert events == [SpikeEvent("a", 1.0)]

    def test_threshold_reached_exactly(self):
        det = SpikeDetector(["a"], threshold=-20.0)
        spiked, _ = det.detect(np.array([-20.5]), np.array([-20.0]), 1.0)
        assert spiked.tolist() == [0]

    def test_no_spike_when_already_above(self):
        det = SpikeDetector(["a"], threshold=-20.0)
        spiked, events = det.detect(np.array([0.0]), np.array([10.0]), 1.0)
        assert len(spiked) == 0 and events == []

    def test_jittery_crossing_counts_once(self):
        det = SpikeDetector(["a"], threshold=-20.0, refractory=1.0)
        trace = [-25.0, -19.9, -20.1, -19.8, -20.2, -19.5, -21.0, -18.0]
        for k in range(1, len(trace)):
            det.detect(np.array([trace[k - 1]]), np.array([trace[k]]), k * DT)
        assert det.n_spikes == 1
        assert det.spikes_of("a") == [DT]

    def test_spikes_again_after_refractory(self):
        det = SpikeDetector(["a"], threshold=-20.0, refractory=1.0)
        det.detect(np.array([-30.0]), np.array([0.0]), 1.0)
        det.detect(np.array([-30.0]), np.array([0.0]), 1.5)
        det.detect(np.array([-30.0]), np.array([0.0]), 2.0)
        assert det.spikes_of("a") == [1.0, 2.0]

    def test_bounded_history(self):
        det = SpikeDetector(["a"], threshold=0.0, refractory=0.1, history=3)
        for k in range(10):
            det.detect(np.array([-1.0]), np.array([1.0]), float(k))
        assert det.n_spikes == 10
        assert det.spikes_of("a") == [7.0, 8.0, 9.0]


# ---------------------------------------------------------------------------
# Dual-exponential synapses
# ---------------------------------------------------------------------------

class TestSynapseBank:

    def test_peak_factor_normalises_peak(self):
        factor, tau_rise = peak_factor(np.array([0.5]), np.array([3.0]))
        tp = 0.5 * 3.0 / 2.5 * np.log(3.0 / 0.5)
        peak = factor[0] * (np.exp(-tp / 3.0) - np.exp(-tp / 0.5))
        assert peak == pytest.approx(1.0)
        assert tau_rise[0] == 0.5

    def test_equal_time_constants_are_separated(self):
        factor, tau_rise = peak_factor(np.array([2.0]), np.array([2.0]))
        assert tau_rise[0] < 2.0
        assert np.isfinite(factor[0])

    def test_delay_in_ticks(self):
        assert delay_in_ticks(1.0, DT) == 40
        assert delay_in_ticks(0.0, DT) == 1
        assert delay_in_ticks(0.01, DT) == 1

    def test_trigger_is_delayed(self, pair_model):
        bank = SynapseBank.from_model(pair_model, DT)
        bank.on_spikes([0], tick=10)
        assert bank.n_pending == 1
        bank.deliver(49)
        assert bank.conductance()[0] == 0.0
        bank.deliver(50)
        assert bank.conductance()[0] == 0.0   # A == B right after a trigger
        bank.decay()
        assert bank.conductance()[0] > 0.0
        assert bank.n_pending == 0

    def test_spike_on_post_does_not_trigger(self, pair_model):
        bank = SynapseBank.from_model(pair_model, DT)
        bank.on_spikes([1], tick=0)
        assert bank.n_pending == 0

    def test_single_event_peak_equals_weight(self, pair_model):
        bank = SynapseBank.from_model(pair_model, DT)
        bank.on_spikes([0], tick=-40)
        trace = _single_event_trace(bank, 800)
        assert trace.max() == pytest.approx(0.05, rel=1e-3)
        assert trace[-1] < 0.01 * trace.max()

    def test_events_summate(self, pair_model):
        single = SynapseBank.from_model(pair_model, DT)
        single.on_spikes([0], tick=-40)
        double = SynapseBank.from_model(pair_model, DT)
        double.on_spikes([0], tick=-40)
        double.on_spikes([0], tick=-40)
        np.testing.assert_allclose(_single_event_trace(double, 200),
                                   2.0 * _single_event_trace(single, 200))

    def test_conductances_by_post(self, pair_model):
        bank = SynapseBank.from_model(pair_model, DT)
        bank.on_spikes([0], tick=-40)
        bank.deliver(0)
        bank.decay()
        g, ge = bank.conductances()
        assert g[0] == 0.0
        assert g[1] > 0.0
        assert ge[1] == pytest.approx(0.0)     # E_syn = 0
        current = bank.currents(np.array([-65.0, -65.0]))
        assert current[0] == pytest.approx(g[1] * -65.0)

    def test_no_synapses(self):
        model = build_model(Scene(compartments=(
            CompartmentRecord(id="a", length=10.0, radius=5.0),)))
        bank = SynapseBank.from_model(model, DT)
        g, ge = bank.conductances()
        assert g.tolist() == [0.0] and ge.tolist() == [0.0]
        bank.on_spikes([0], 0)
        bank.deliver(5)
        bank.decay()
