"""Cable-equation integrator.

For every compartment

    C dV/dt = -sum_k g_k (V - E_k) + I_stim + I_axial

where the membrane sum runs over open channel and synaptic conductances,
and I_axial = sum_j g_ij (V_j - V_i) over axial neighbors. Axial currents
are computed from the committed voltages of the previous tick, and the
new voltages are written to a fresh array: no compartment ever reads a
neighbor's in-progress update, so the result does not depend on the order
of compartments.

The membrane term is integrated exponentially, treating the axial and
stimulus currents as constant over the step:

    V_inf = (sum g E + I_stim + I_axial) / sum g
    V_new = V_inf + (V - V_inf) * exp(-dt * sum g / C)

which is unconditionally stable for the membrane part. The explicit axial
coupling is stable only while dt * max_i(sum_j g_ij / C_i) stays small;
stability_ratio() reports that number.
"""

import numpy as np

from dendra.errors import IntegrationDivergence


class CableIntegrator:
    """Advance compartment voltages one timestep.

    Parameters
    ----------
    capacitance : np.ndarray
        Total capacitance per compartment (nF).
    edges : np.ndarray
        Axial edges (i, j), shape (n_edges, 2).
    g_axial : np.ndarray
        Axial conductance per edge (uS).
    """

    def __init__(self, capacitance, edges, g_axial):
        self.capacitance = np.asarray(capacitance, dtype=np.float64)
        self.edges = np.asarray(edges, dtype=np.int64).reshape(-1, 2)
        self.g_axial = np.asarray(g_axial, dtype=np.float64)
        n = len(self.capacitance)
        self.n_compartments = n
        # Sum of axial conductances touching each compartment.
        self.g_axial_total = (
            np.bincount(self.edges[:, 0], weights=self.g_axial, minlength=n)
            + np.bincount(self.edges[:, 1], weights=self.g_axial, minlength=n)
        ) if len(self.g_axial) else np.zeros(n)

    @classmethod
    def from_model(cls, model):
        return cls(model.capacitance, model.edges, model.g_axial)

    def stability_ratio(self, dt):
        """dt times the largest axial rate constant (dimensionless)."""
        if self.n_compartments == 0:
            return 0.0
        return float(dt * np.max(self.g_axial_total / self.capacitance))

    def axial_currents(self, v):
        """Net axial current into each compartment (nA) from voltages v."""
        current = np.zeros(self.n_compartments, dtype=np.float64)
        if len(self.g_axial) == 0:
            return current
        i, j = self.edges[:, 0], self.edges[:, 1]
        flow = self.g_axial * (v[j] - v[i])  # from j into i
        np.add.at(current, i, flow)
        np.add.at(current, j, -flow)
        return current

    def step(self, v, dt, g_membrane, ge_membrane, i_stim=None):
        """Voltages after one timestep.

        Parameters
        ----------
        v : np.ndarray
            Committed voltages (mV); not modified.
        dt : float
            ms.
        g_membrane : np.ndarray
            Total membrane conductance per compartment (uS).
        ge_membrane : np.ndarray
            Sum of g * E per compartment (nA).
        i_stim : np.ndarray, optional
            Injected current per compartment (nA, positive depolarizes).

        Returns
        -------
        np.ndarray
            New voltages (mV).
        """
        drive = ge_membrane + self.axial_currents(v)
        if i_stim is not None:
            drive = drive + i_stim

        conducting = g_membrane > 0.0
        safe_g = np.where(conducting, g_membrane, 1.0)
        with np.errstate(over="ignore", invalid="ignore"):
            v_inf = drive / safe_g
            decay = np.exp(-dt * safe_g / self.capacitance)
            exponential = v_inf + (v - v_inf) * decay
            # No membrane conductance: plain forward step of the drive.
            forward = v + dt * drive / self.capacitance
        return np.where(conducting, exponential, forward)


def check_voltages(v, bound, compartment_ids, tick_index=None):
    """Raise IntegrationDivergence on a non-finite or out-of-bound voltage."""
    bad = ~np.isfinite(v) | (np.abs(v) > bound)
    if np.any(bad):
        i = int(np.argmax(bad))
        raise IntegrationDivergence("voltage", compartment_ids[i], float(v[i]), tick_index)
