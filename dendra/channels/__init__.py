"""channels — Voltage-gated and passive membrane conductances.

Gating kinetics in Hodgkin-Huxley alpha/beta form or in steady-state/tau
form, advanced with the exponential update that keeps every gate in
[0, 1]. Channel presets and a parser for scene channel entries live in
library; the vectorized per-compartment state lives in kinetics.
"""

from .gating import (
    ExpRate,
    SigmoidRate,
    ExpLinearRate,
    InstantaneousTau,
    ConstantTau,
    BellTau,
    LinearExpTau,
    AlphaBetaKinetics,
    SteadyStateKinetics,
    GateSpec,
    exponential_update,
)
from .library import (
    ChannelSpec,
    CHANNEL_DB,
    HH_CHANNELS,
    get_channel,
    list_channels,
    parse_channel,
    parse_gate,
    nernst_potential,
    selectivity_reversal,
)
from .kinetics import ChannelGroup, ChannelBank
