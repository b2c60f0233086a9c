"""Per-compartment channel state, stored as vectorized banks.

Channel instances sharing the same kinetics (same preset name and gates)
are grouped into one ChannelGroup whose gate values form a
(n_gates, n_instances) array. Maximal conductance and reversal potential
may differ between instances of a group.

Conductances are absolute (uS), currents are in nA, voltages in mV.
"""

from dataclasses import dataclass

import numpy as np

from dendra.errors import IntegrationDivergence
from dendra.utils import get_logger

LOG = get_logger("channels.kinetics")


@dataclass
class ChannelGroup:
    """All instances of one channel kind.

    Attributes
    ----------
    spec : ChannelSpec
        Representative spec; its gates apply to every instance.
    comp_idx : np.ndarray
        Compartment index of each instance.
    g_abs : np.ndarray
        Absolute maximal conductance per instance (uS).
    e_rev : np.ndarray
        Reversal potential per instance (mV).
    state : np.ndarray
        Gate values, shape (n_gates, n_instances).
    """
    spec: object
    comp_idx: np.ndarray
    g_abs: np.ndarray
    e_rev: np.ndarray
    state: np.ndarray

    @property
    def n_instances(self):
        return len(self.comp_idx)

    def open_fraction(self):
        """Product of gate values raised to their powers, per instance."""
        fraction = np.ones(self.n_instances, dtype=np.float64)
        for k, gate in enumerate(self.spec.gates):
            fraction *= self.state[k] ** gate.power
        return fraction

    def advance(self, v, dt):
        vv = v[self.comp_idx]
        for k, gate in enumerate(self.spec.gates):
            self.state[k] = gate.advance(self.state[k], vv, dt)


class ChannelBank:
    """Channel state for a whole model.

    Parameters
    ----------
    groups : list of ChannelGroup
    n_compartments : int
    compartment_ids : sequence
        Scene ids by dense index, for diagnostics.
    """

    def __init__(self, groups, n_compartments, compartment_ids):
        self.groups = groups
        self.n_compartments = n_compartments
        self.compartment_ids = compartment_ids

    @classmethod
    def from_model(cls, model, v):
        """Instantiate every channel of a model with gates at steady state.

        Parameters
        ----------
        model : Model
        v : np.ndarray
            Initial voltages by compartment index (mV).
        """
        collected = {}
        for comp in model.compartments:
            for spec in comp.channels:
                entry = collected.setdefault(spec.kinetics_key, (spec, [], [], []))
                entry[1].append(comp.index)
                # mS/cm2 * cm2 = mS -> uS
                entry[2].append(spec.g_max * comp.area * 1.0e3)
                entry[3].append(spec.reversal)

        groups = []
        for spec, comp_idx, g_abs, e_rev in collected.values():
            comp_idx = np.asarray(comp_idx, dtype=np.int64)
            state = np.zeros((len(spec.gates), len(comp_idx)), dtype=np.float64)
            for k, gate in enumerate(spec.gates):
                state[k] = gate.steady_state(v[comp_idx])
            groups.append(ChannelGroup(
                spec=spec,
                comp_idx=comp_idx,
                g_abs=np.asarray(g_abs, dtype=np.float64),
                e_rev=np.asarray(e_rev, dtype=np.float64),
                state=state,
            ))

        bank = cls(groups, model.n_compartments, model.ids)
        LOG.debug("Channel bank: %d groups, %d instances",
                  len(groups), bank.n_instances)
        return bank

    @property
    def n_instances(self):
        return sum(g.n_instances for g in self.groups)

    def update(self, v, dt):
        """Advance all gates one step at the committed voltages v."""
        for group in self.groups:
            group.advance(v, dt)

    def conductances(self):
        """Total open conductance and conductance-weighted reversal.

        Returns
        -------
        g_sum : np.ndarray
            Sum of g per compartment (uS).
        ge_sum : np.ndarray
            Sum of g * E_rev per compartment (uS * mV = nA).
        """
        n = self.n_compartments
        g_sum = np.zeros(n, dtype=np.float64)
        ge_sum = np.zeros(n, dtype=np.float64)
        for group in self.groups:
            g = group.g_abs * group.open_fraction()
            g_sum += np.bincount(group.comp_idx, weights=g, minlength=n)
            ge_sum += np.bincount(group.comp_idx, weights=g * group.e_rev, minlength=n)
        return g_sum, ge_sum

    def currents(self, v):
        """Outward ionic current per compartment (nA) at voltages v."""
        g_sum, ge_sum = self.conductances()
        return g_sum * v - ge_sum

    def gate_values(self, index):
        """Gate values of every channel in one compartment.

        Returns
        -------
        dict
            channel name -> list of gate values.
        """
        values = {}
        for group in self.groups:
            hits = np.nonzero(group.comp_idx == index)[0]
            for i in hits:
                values[group.spec.name] = [float(x) for x in group.state[:, i]]
        return values

    def check(self, tick_index=None):
        """Raise IntegrationDivergence if a gate left [0, 1] or went non-finite."""
        for group in self.groups:
            if group.state.size == 0:
                continue
            bad = ~np.isfinite(group.state) | (group.state < 0.0) | (group.state > 1.0)
            if np.any(bad):
                k, i = np.argwhere(bad)[0]
                raise IntegrationDivergence(
                    "gating",
                    self.compartment_ids[group.comp_idx[i]],
                    float(group.state[k, i]),
                    tick_index,
                )
