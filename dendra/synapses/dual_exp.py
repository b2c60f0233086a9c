"""Dual-exponential synapses with delayed, additive triggers.

Each synapse carries two state variables, A decaying with tau_rise and B
decaying with tau_decay; its conductance is g = B - A. A presynaptic spike
schedules a trigger that, after the transmission delay, adds weight *
factor to both, where factor scales a single event's peak to `weight`.
Triggers add to whatever is already there, so trains of inputs summate.

    tp     = tau_r * tau_d / (tau_d - tau_r) * ln(tau_d / tau_r)
    factor = 1 / (exp(-tp / tau_d) - exp(-tp / tau_r))

Conductances in uS, voltages in mV, currents in nA.
"""

import heapq
import itertools

import numpy as np

from dendra.utils import get_logger

LOG = get_logger("synapses.dual_exp")

# tau_rise / tau_decay ratios above this are pulled apart to keep the
# normalisation finite.
MAX_TAU_RATIO = 0.9999


def peak_factor(tau_rise, tau_decay):
    """Normalisation making a single event's peak conductance equal to 1."""
    tau_rise = np.minimum(np.asarray(tau_rise, dtype=np.float64),
                          MAX_TAU_RATIO * np.asarray(tau_decay, dtype=np.float64))
    tau_decay = np.asarray(tau_decay, dtype=np.float64)
    tp = tau_rise * tau_decay / (tau_decay - tau_rise) * np.log(tau_decay / tau_rise)
    return 1.0 / (np.exp(-tp / tau_decay) - np.exp(-tp / tau_rise)), tau_rise


def delay_in_ticks(delay, dt):
    """Transmission delay rounded to whole ticks, at least one."""
    return max(1, int(round(delay / dt)))


class SynapseBank:
    """State of every synapse of a model.

    Parameters
    ----------
    synapses : list of SynapseDef
    n_compartments : int
    dt : float
        Timestep (ms).
    """

    def __init__(self, synapses, n_compartments, dt):
        self.n_compartments = n_compartments
        self.dt = dt
        n = len(synapses)
        self.ids = [s.id for s in synapses]
        self.pre = np.array([s.pre for s in synapses], dtype=np.int64)
        self.post = np.array([s.post for s in synapses], dtype=np.int64)
        self.weight = np.array([s.weight for s in synapses], dtype=np.float64)
        self.e_rev = np.array([s.reversal for s in synapses], dtype=np.float64)
        self.tau_decay = np.array([s.decay_tau for s in synapses], dtype=np.float64)
        self.factor, self.tau_rise = peak_factor(
            np.array([s.rise_tau for s in synapses], dtype=np.float64), self.tau_decay)
        self.delay_ticks = np.array([delay_in_ticks(s.delay, dt) for s in synapses],
                                    dtype=np.int64)

        self.rise_decay = np.exp(-dt / self.tau_rise)
        self.decay_decay = np.exp(-dt / self.tau_decay)
        self.a = np.zeros(n, dtype=np.float64)
        self.b = np.zeros(n, dtype=np.float64)

        self._outgoing = {}
        for k, pre in enumerate(self.pre):
            self._outgoing.setdefault(int(pre), []).append(k)
        self._pending = []
        self._sequence = itertools.count()
        self.n_delivered = 0

    @classmethod
    def from_model(cls, model, dt):
        return cls(model.synapses, model.n_compartments, dt)

    @property
    def n_synapses(self):
        return len(self.weight)

    @property
    def n_pending(self):
        return len(self._pending)

    def on_spikes(self, spiked, tick):
        """Schedule triggers for every synapse leaving a spiking compartment.

        Parameters
        ----------
        spiked : iterable of int
            Arena indices that spiked at the end of `tick`.
        tick : int
            Index of the tick boundary at which they spiked.
        """
        for comp in spiked:
            for k in self._outgoing.get(int(comp), ()):
                due = tick + int(self.delay_ticks[k])
                heapq.heappush(self._pending, (due, next(self._sequence), k))

    def deliver(self, tick):
        """Apply all triggers due at or before `tick`."""
        while self._pending and self._pending[0][0] <= tick:
            _, _, k = heapq.heappop(self._pending)
            increment = self.weight[k] * self.factor[k]
            self.a[k] += increment
            self.b[k] += increment
            self.n_delivered += 1

    def conductance(self):
        """Current conductance of each synapse (uS)."""
        return self.b - self.a

    def conductances(self):
        """Per-compartment synaptic conductance and g * E_syn sums."""
        n = self.n_compartments
        if self.n_synapses == 0:
            return np.zeros(n), np.zeros(n)
        g = self.conductance()
        return (np.bincount(self.post, weights=g, minlength=n),
                np.bincount(self.post, weights=g * self.e_rev, minlength=n))

    def currents(self, v):
        """Synaptic current into each synapse's post compartment: g (V_post - E)."""
        return self.conductance() * (v[self.post] - self.e_rev)

    def decay(self):
        """Advance the free decay of A and B by one timestep."""
        self.a *= self.rise_decay
        self.b *= self.decay_decay
