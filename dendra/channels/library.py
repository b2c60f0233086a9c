"""Channel definitions: the preset database and the scene channel parser.

A ChannelSpec describes one kind of membrane conductance: its maximal
conductance density, its reversal potential and its gates. Scene records
name channels either by preset (a string, or a mapping with a "preset" key
whose other keys override the preset) or spell them out in full.

A channel permeable to several ions (HCN, AMPA) takes the
selectivity-weighted mean of the ions' Nernst potentials as its reversal.

References:
    Hodgkin & Huxley 1952 — J Physiol 117:500-544 (squid giant axon)
    Huguenard & McCormick 1992 — J Neurophysiol 68:1373 (rat thalamocortical)
    Magee 1998 — J Neurosci 18:7613 (rat CA1 Ih)
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field, replace

from dendra.channels.gating import (
    RATE_FORMS, TAU_FORMS,
    AlphaBetaKinetics, SteadyStateKinetics, GateSpec,
    ExpRate, SigmoidRate, ExpLinearRate, BellTau, InstantaneousTau, LinearExpTau,
)
from dendra.errors import InvalidValue, MissingField


# ---------------------------------------------------------------------------
# Ionic solutions and reversal potentials
# ---------------------------------------------------------------------------

GAS_CONSTANT = 8.314           # J / (mol K)
FARADAY = 96485.3              # C / mol
ZERO_CELSIUS = 273.15

VALENCE = {"na": 1, "k": 1, "ca": 2, "cl": -1}

# Concentrations (M)
INTERSTITIAL_FLUID = {"na": 145e-3, "k": 5e-3, "cl": 110e-3, "ca": 2.5e-3}
EXAMPLE_CYTOPLASM = {"na": 5e-3, "k": 140e-3, "cl": 4e-3, "ca": 0.1e-6}


def nernst_potential(ion, inside=None, outside=None, temperature=37.0):
    """Nernst reversal potential (mV) of an ion.

    Parameters
    ----------
    ion : str
        One of "na", "k", "ca", "cl".
    inside, outside : dict, optional
        Ion concentrations (M). Default to EXAMPLE_CYTOPLASM and
        INTERSTITIAL_FLUID.
    temperature : float
        Celsius.
    """
    if not isinstance(ion, str) or ion.lower() not in VALENCE:
        raise InvalidValue(f"Unknown ion {ion!r}; expected one of {sorted(VALENCE)}")
    ion = ion.lower()
    inside = inside or EXAMPLE_CYTOPLASM
    outside = outside or INTERSTITIAL_FLUID
    kelvin = temperature + ZERO_CELSIUS
    rt_zf = GAS_CONSTANT * kelvin / (VALENCE[ion] * FARADAY)
    try:
        return 1000.0 * rt_zf * math.log(float(outside[ion]) / float(inside[ion]))
    except (KeyError, TypeError, ValueError, ZeroDivisionError):
        raise InvalidValue(f"Need positive {ion} concentrations on both sides, got "
                           f"inside={inside.get(ion)!r}, outside={outside.get(ion)!r}")


def selectivity_reversal(selectivity, inside=None, outside=None, temperature=37.0):
    """Reversal potential (mV) of a channel permeable to several ions.

    Parameters
    ----------
    selectivity : dict
        Relative permeability per ion, e.g. {"na": 0.55, "k": 0.45}.
        Weights are normalised to sum to one.
    """
    total = sum(selectivity.values())
    if not total > 0:
        raise InvalidValue(f"Ion selectivity {dict(selectivity)!r} must have a "
                           f"positive sum")
    return sum(weight / total * nernst_potential(ion, inside, outside, temperature)
               for ion, weight in selectivity.items() if weight)


# ---------------------------------------------------------------------------
# Channel definition
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ChannelSpec:
    """A kind of membrane conductance.

    Parameters
    ----------
    name : str
        Human-readable name (e.g. "hh_na").
    g_max : float
        Maximal conductance density (mS/cm2).
    reversal : float
        Reversal potential (mV).
    gates : tuple of GateSpec
        Gating variables; an empty tuple is a passive (leak) conductance.
    source : str
        Key reference for the parameters.
    """
    name: str
    g_max: float
    reversal: float
    gates: tuple = field(default_factory=tuple)
    source: str = ""

    @property
    def kinetics_key(self):
        """Channels sharing this key can share one state bank."""
        return (self.name, self.gates)

    def to_dict(self):
        return {
            "name": self.name,
            "g_max_mS_cm2": self.g_max,
            "reversal_mV": self.reversal,
            "n_gates": len(self.gates),
            "source": self.source,
        }


# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

HH = "Hodgkin & Huxley 1952, rest shifted to -65 mV"
THALAMOCORTICAL = "Huguenard & McCormick 1992, rat thalamocortical relay"
CA1 = "Magee 1998, rat CA1 pyramidal Ih"

HH_M = GateSpec(
    AlphaBetaKinetics(alpha=ExpLinearRate(1.0, -40.0, 10.0),
                      beta=ExpRate(4.0, -65.0, -18.0)),
    power=3,
)
HH_H = GateSpec(
    AlphaBetaKinetics(alpha=ExpRate(0.07, -65.0, -20.0),
                      beta=SigmoidRate(1.0, -35.0, 10.0)),
    power=1,
)
HH_N = GateSpec(
    AlphaBetaKinetics(alpha=ExpLinearRate(0.1, -55.0, 10.0),
                      beta=ExpRate(0.125, -65.0, -80.0)),
    power=4,
)

SQUID_M = GateSpec(SteadyStateKinetics(-40.0, 15.0, BellTau(-38.0, 0.04, 0.46, 30.0)), power=3)
SQUID_H = GateSpec(SteadyStateKinetics(-62.0, -7.0, BellTau(-67.0, 1.2, 7.4, 20.0)), power=1)
SQUID_N = GateSpec(SteadyStateKinetics(-53.0, 15.0, BellTau(-79.0, 1.1, 4.7, 50.0)), power=4)

NAT_M = GateSpec(SteadyStateKinetics(-30.0, 5.5, InstantaneousTau()), power=1)
NAT_H = GateSpec(SteadyStateKinetics(-70.0, -5.8, LinearExpTau(3.0, -40.0, 1.0 / 33.0)),
                 power=1)
KS_M = GateSpec(SteadyStateKinetics(-3.0, 10.0, BellTau(-50.0, 5.0, 47.0, 30.0)), power=1)
KS_H = GateSpec(SteadyStateKinetics(-51.0, -12.0, BellTau(-50.0, 360.0, 100.0, 50.0)),
                power=1)

HCN_DENDRITE_H = GateSpec(SteadyStateKinetics(-90.0, -8.5, BellTau(-75.0, 10.0, 40.0, 20.0)),
                          power=1)
HCN_SOMA_H = GateSpec(SteadyStateKinetics(-82.0, -9.0, BellTau(-75.0, 10.0, 50.0, 20.0)),
                      power=1)

CA_M = GateSpec(SteadyStateKinetics(0.0, 15.0, BellTau(0.0, 0.04, 0.5, 30.0)), power=2)

HCN_DENDRITE_SELECTIVITY = {"na": 0.55, "k": 0.45}
HCN_SOMA_SELECTIVITY = {"na": 0.35, "k": 0.65}
AMPA_SELECTIVITY = {"na": 0.5, "k": 0.5}

CHANNEL_DB = {
    "hh_na": ChannelSpec("hh_na", g_max=120.0, reversal=50.0,
                         gates=(HH_M, HH_H), source=HH),
    "hh_k": ChannelSpec("hh_k", g_max=36.0, reversal=-77.0,
                        gates=(HH_N,), source=HH),
    "hh_leak": ChannelSpec("hh_leak", g_max=0.3, reversal=-54.387,
                           source=HH),
    "squid_na": ChannelSpec("squid_na", g_max=120.0, reversal=50.0,
                            gates=(SQUID_M, SQUID_H),
                            source="Boltzmann/bell fit to squid axon Na+"),
    "squid_k": ChannelSpec("squid_k", g_max=36.0, reversal=-77.0,
                           gates=(SQUID_N,),
                           source="Boltzmann/bell fit to squid axon K+"),
    "na_transient": ChannelSpec("na_transient", g_max=23.0,
                                reversal=nernst_potential("na"),
                                gates=(NAT_M, NAT_H), source=THALAMOCORTICAL),
    "k_slow": ChannelSpec("k_slow", g_max=40.0, reversal=nernst_potential("k"),
                          gates=(KS_M, KS_H), source=THALAMOCORTICAL),
    "hcn_dendrite": ChannelSpec("hcn_dendrite", g_max=0.08,
                                reversal=selectivity_reversal(HCN_DENDRITE_SELECTIVITY),
                                gates=(HCN_DENDRITE_H,), source=CA1),
    "hcn_soma": ChannelSpec("hcn_soma", g_max=0.08,
                            reversal=selectivity_reversal(HCN_SOMA_SELECTIVITY),
                            gates=(HCN_SOMA_H,), source=CA1),
    "ca": ChannelSpec("ca", g_max=1.0, reversal=nernst_potential("ca"),
                      gates=(CA_M,),
                      source="Illustrative high-threshold Ca2+ conductance"),
    "ampa": ChannelSpec("ampa", g_max=0.0,
                        reversal=selectivity_reversal(AMPA_SELECTIVITY),
                        source="Mixed Na+/K+ cation pore; set g_max when used"),
    "leak": ChannelSpec("leak", g_max=0.3, reversal=-65.0,
                        source="Passive membrane"),
}

HH_CHANNELS = ("hh_na", "hh_k", "hh_leak")


def get_channel(name):
    """Look up a preset channel by name."""
    if not isinstance(name, str) or name not in CHANNEL_DB:
        raise InvalidValue(f"Unknown channel preset {name!r}; "
                           f"available: {sorted(CHANNEL_DB)}")
    return CHANNEL_DB[name]


def list_channels():
    """Names of all preset channels."""
    return sorted(CHANNEL_DB)


# ---------------------------------------------------------------------------
# Parsing scene channel specs
# ---------------------------------------------------------------------------

def _mapping(raw, where):
    if not isinstance(raw, Mapping):
        raise InvalidValue(f"{where} must be a mapping, got {type(raw).__name__}",
                           record=where)
    return raw


def _require(mapping, key, where):
    if key not in mapping or mapping[key] is None:
        raise MissingField(f"{where} lacks required field {key!r}", record=where)
    return mapping[key]


def _number(value, where, positive=False, nonzero=False, nonnegative=False):
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidValue(f"{where} must be a number, got {value!r}", record=where)
    if not math.isfinite(number):
        raise InvalidValue(f"{where} must be finite, got {value!r}", record=where)
    if positive and number <= 0:
        raise InvalidValue(f"{where} must be positive, got {value!r}", record=where)
    if nonzero and number == 0:
        raise InvalidValue(f"{where} must be nonzero", record=where)
    if nonnegative and number < 0:
        raise InvalidValue(f"{where} must be non-negative, got {value!r}", record=where)
    return number


def _form(raw, forms, where):
    form = _require(raw, "form", where)
    if not isinstance(form, str) or form not in forms:
        raise InvalidValue(f"{where}: unknown form {form!r}; "
                           f"expected one of {sorted(forms)}", record=where)
    return form


def _parse_rate(raw, where):
    raw = _mapping(raw, where)
    form = _form(raw, RATE_FORMS, where)
    return RATE_FORMS[form](
        rate=_number(_require(raw, "rate", where), f"{where}.rate", nonnegative=True),
        midpoint=_number(_require(raw, "midpoint", where), f"{where}.midpoint"),
        scale=_number(_require(raw, "scale", where), f"{where}.scale", nonzero=True),
    )


def _parse_tau(raw, where):
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return TAU_FORMS["constant"](_number(raw, where, nonnegative=True))
    raw = _mapping(raw, where)
    form = _form(raw, TAU_FORMS, where)
    if form == "instantaneous":
        return TAU_FORMS["instantaneous"]()
    if form == "constant":
        return TAU_FORMS["constant"](
            _number(_require(raw, "tau", where), f"{where}.tau", nonnegative=True))
    if form == "linear_exp":
        return LinearExpTau(
            coef=_number(_require(raw, "coef", where), f"{where}.coef",
                         nonnegative=True),
            v_offset=_number(_require(raw, "v_offset", where), f"{where}.v_offset"),
            inner_coef=_number(_require(raw, "inner_coef", where),
                               f"{where}.inner_coef"),
        )
    return BellTau(
        v_at_max=_number(_require(raw, "v_at_max", where), f"{where}.v_at_max"),
        c_base=_number(_require(raw, "c_base", where), f"{where}.c_base",
                       nonnegative=True),
        c_amp=_number(_require(raw, "c_amp", where), f"{where}.c_amp",
                      nonnegative=True),
        sigma=_number(_require(raw, "sigma", where), f"{where}.sigma", nonzero=True),
    )


def parse_gate(raw, where="gate"):
    """Build a GateSpec from a mapping.

    Either {"power", "alpha": {...}, "beta": {...}} or
    {"power", "steady_state": {"v_half", "slope"}, "tau": ...}.
    """
    raw = _mapping(raw, where)
    power = int(_number(raw.get("power", 1), f"{where}.power", positive=True))
    if "alpha" in raw or "beta" in raw:
        kinetics = AlphaBetaKinetics(
            alpha=_parse_rate(_require(raw, "alpha", where), f"{where}.alpha"),
            beta=_parse_rate(_require(raw, "beta", where), f"{where}.beta"),
        )
    elif "steady_state" in raw:
        ss = _mapping(raw["steady_state"], f"{where}.steady_state")
        kinetics = SteadyStateKinetics(
            v_half=_number(_require(ss, "v_half", where), f"{where}.v_half"),
            slope=_number(_require(ss, "slope", where), f"{where}.slope", nonzero=True),
            tau=_parse_tau(raw.get("tau", {"form": "instantaneous"}), f"{where}.tau"),
        )
    else:
        raise MissingField(f"{where} needs either alpha/beta or steady_state",
                           record=where)
    return GateSpec(kinetics=kinetics, power=power)


def _parse_reversal(raw, where, temperature):
    """A number (mV), {"ion": ...} or {"selectivity": {ion: weight}}."""
    if not isinstance(raw, Mapping):
        return _number(raw, where)
    temperature = _number(raw.get("temperature", temperature), f"{where}.temperature")
    inside, outside = raw.get("inside"), raw.get("outside")
    for name, solution in (("inside", inside), ("outside", outside)):
        if solution is not None:
            _mapping(solution, f"{where}.{name}")
    if "selectivity" in raw:
        selectivity = _mapping(raw["selectivity"], f"{where}.selectivity")
        weights = {ion: _number(weight, f"{where}.selectivity.{ion}", nonnegative=True)
                   for ion, weight in selectivity.items()}
        return selectivity_reversal(weights, inside, outside, temperature)
    ion = _require(raw, "ion", where)
    return nernst_potential(ion, inside, outside, temperature)


def parse_channel(raw, where="channel", temperature=37.0):
    """Build a ChannelSpec from a scene channel entry.

    Parameters
    ----------
    raw : str, dict or ChannelSpec
        A preset name, a preset with overrides ({"preset": "hh_k",
        "g_max": 20}), or a full definition with name, g_max, reversal
        and gates.
    where : str
        Location used in error messages.
    temperature : float
        Celsius, for reversal potentials given as {"ion": ...} or
        {"selectivity": ...}.
    """
    if isinstance(raw, ChannelSpec):
        return raw
    if isinstance(raw, str):
        return get_channel(raw)
    if not isinstance(raw, Mapping):
        raise InvalidValue(f"{where} must be a preset name or a mapping", record=where)

    if "preset" in raw:
        base = get_channel(raw["preset"])
        overrides = {}
        if "g_max" in raw:
            overrides["g_max"] = _number(raw["g_max"], f"{where}.g_max", nonnegative=True)
        if "reversal" in raw:
            overrides["reversal"] = _parse_reversal(raw["reversal"], f"{where}.reversal",
                                                    temperature)
        return replace(base, **overrides)

    gates = raw.get("gates") or ()
    if not isinstance(gates, (list, tuple)):
        raise InvalidValue(f"{where}.gates must be a list of gate mappings",
                           record=where)
    return ChannelSpec(
        name=str(raw.get("name", "custom")),
        g_max=_number(_require(raw, "g_max", where), f"{where}.g_max", nonnegative=True),
        reversal=_parse_reversal(_require(raw, "reversal", where), f"{where}.reversal",
                                 temperature),
        gates=tuple(parse_gate(g, f"{where}.gates[{i}]") for i, g in enumerate(gates)),
        source=str(raw.get("source", "")),
    )
