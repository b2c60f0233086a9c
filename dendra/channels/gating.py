"""Voltage-dependent gating kinetics.

A gate is described either by an opening rate alpha(V) and a closing rate
beta(V), or directly by its steady state x_inf(V) and time constant tau(V).
Both reduce to (x_inf, tau), from which the gate is advanced with the
exponential update

    x(t + dt) = x_inf + (x(t) - x_inf) * exp(-dt / tau)

The update is a convex combination of x(t) and x_inf, both in [0, 1], so
the gate stays in [0, 1] for every timestep.

Rate forms follow the Hodgkin-Huxley conventions (NeuroML naming):
    exp          r * exp((V - m) / s)
    sigmoid      r / (1 + exp(-(V - m) / s))
    exp_linear   r * x / (1 - exp(-x)),  x = (V - m) / s

Time constant forms:
    instantaneous  0
    constant       tau
    bell           c_base + c_amp * exp(-(v_max - V)^2 / sigma^2)
    linear_exp     coef * exp((v_offset - V) * k)

All functions accept scalars or numpy arrays of voltages (mV) and return
rates in 1/ms and time constants in ms.
"""

from dataclasses import dataclass

import numpy as np


# Rates are evaluated on voltages saturated to this range so that every
# finite input yields finite rates.
V_SATURATION = (-1000.0, 1000.0)

# Exponent arguments beyond this are clipped before np.exp.
_EXP_LIMIT = 500.0


def _saturate(v):
    return np.clip(np.asarray(v, dtype=np.float64), *V_SATURATION)


def _exp(x):
    return np.exp(np.clip(x, -_EXP_LIMIT, _EXP_LIMIT))


# ---------------------------------------------------------------------------
# Rate forms
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExpRate:
    """r * exp((V - midpoint) / scale)"""
    rate: float
    midpoint: float
    scale: float

    def __call__(self, v):
        return self.rate * _exp((_saturate(v) - self.midpoint) / self.scale)


@dataclass(frozen=True)
class SigmoidRate:
    """r / (1 + exp(-(V - midpoint) / scale))"""
    rate: float
    midpoint: float
    scale: float

    def __call__(self, v):
        return self.rate / (1.0 + _exp(-(_saturate(v) - self.midpoint) / self.scale))


@dataclass(frozen=True)
class ExpLinearRate:
    """r * x / (1 - exp(-x)) with x = (V - midpoint) / scale.

    The removable singularity at x = 0 takes its limit value r.
    """
    rate: float
    midpoint: float
    scale: float

    def __call__(self, v):
        x = (_saturate(v) - self.midpoint) / self.scale
        small = np.abs(x) < 1e-6
        safe = np.where(small, 1.0, x)
        with np.errstate(over="ignore", invalid="ignore"):
            value = safe / -np.expm1(-np.clip(safe, -_EXP_LIMIT, _EXP_LIMIT))
        # Series expansion around 0: 1 + x/2
        value = np.where(small, 1.0 + x / 2.0, value)
        return self.rate * value


RATE_FORMS = {
    "exp": ExpRate,
    "sigmoid": SigmoidRate,
    "exp_linear": ExpLinearRate,
}


# ---------------------------------------------------------------------------
# Time constant forms
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class InstantaneousTau:
    """The gate follows its steady state without lag."""

    def __call__(self, v):
        return np.zeros_like(np.asarray(v, dtype=np.float64))


@dataclass(frozen=True)
class ConstantTau:
    tau: float

    def __call__(self, v):
        return np.full_like(np.asarray(v, dtype=np.float64), self.tau)


@dataclass(frozen=True)
class BellTau:
    """c_base + c_amp * exp(-(v_at_max - V)^2 / sigma^2)"""
    v_at_max: float
    c_base: float
    c_amp: float
    sigma: float

    def __call__(self, v):
        d = (self.v_at_max - _saturate(v)) / self.sigma
        return self.c_base + self.c_amp * _exp(-d * d)


@dataclass(frozen=True)
class LinearExpTau:
    """coef * exp((v_offset - V) * inner_coef)

    Monotone in V; with a positive inner_coef the gate slows on
    hyperpolarisation.
    """
    coef: float
    v_offset: float
    inner_coef: float

    def __call__(self, v):
        return self.coef * _exp((self.v_offset - _saturate(v)) * self.inner_coef)


TAU_FORMS = {
    "instantaneous": InstantaneousTau,
    "constant": ConstantTau,
    "bell": BellTau,
    "linear_exp": LinearExpTau,
}


# ---------------------------------------------------------------------------
# Gate kinetics
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AlphaBetaKinetics:
    """Gate driven by opening rate alpha(V) and closing rate beta(V)."""
    alpha: object
    beta: object

    def steady_state_and_tau(self, v):
        a = self.alpha(v)
        b = self.beta(v)
        total = a + b
        # With both rates at zero the gate is frozen: tau -> inf.
        frozen = total <= 0.0
        safe = np.where(frozen, 1.0, total)
        x_inf = np.where(frozen, np.nan, a / safe)
        tau = np.where(frozen, np.inf, 1.0 / safe)
        return x_inf, tau


@dataclass(frozen=True)
class SteadyStateKinetics:
    """Gate given by a Boltzmann steady state and a time-constant form.

    x_inf = 1 / (1 + exp((v_half - V) / slope)); a negative slope gives an
    inactivation gate.
    """
    v_half: float
    slope: float
    tau: object

    def steady_state_and_tau(self, v):
        x_inf = 1.0 / (1.0 + _exp((self.v_half - _saturate(v)) / self.slope))
        return x_inf, self.tau(v)


@dataclass(frozen=True)
class GateSpec:
    """One gating variable of a channel, raised to an integer power."""
    kinetics: object
    power: int = 1

    def steady_state(self, v):
        x_inf, _ = self.kinetics.steady_state_and_tau(v)
        return np.nan_to_num(x_inf, nan=0.0)

    def advance(self, x, v, dt):
        """Exponential update of gate values x at voltages v over dt (ms)."""
        x_inf, tau = self.kinetics.steady_state_and_tau(v)
        return exponential_update(x, x_inf, tau, dt)


def exponential_update(x, x_inf, tau, dt):
    """x_inf + (x - x_inf) * exp(-dt / tau), vectorized.

    tau == 0 relaxes instantly; tau == inf (or undefined x_inf) leaves x.
    """
    x = np.asarray(x, dtype=np.float64)
    x_inf = np.asarray(x_inf, dtype=np.float64)
    tau = np.asarray(tau, dtype=np.float64)
    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        decay = np.where(tau > 0.0, np.exp(-dt / np.where(tau > 0.0, tau, 1.0)), 0.0)
    decay = np.where(np.isfinite(x_inf), decay, 1.0)
    target = np.where(np.isfinite(x_inf), x_inf, x)
    updated = decay * x + (1.0 - decay) * target
    # Rounding guard: the convex combination may overshoot by one ulp.
    return np.clip(updated, 0.0, 1.0)
