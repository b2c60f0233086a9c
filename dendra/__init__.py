"""dendra — Compartmental neuron simulation with a streaming scheduler.

Neurons are trees of cylindrical compartments carrying Hodgkin-Huxley
style channels, coupled axially by the cable equation and to each other
by dual-exponential synapses. A simulation runs independently of whoever
watches it and streams voltage snapshots outward.

Subpackages:
    scene        Scene parsing: mappings, YAML/JSON, DataFrames, SWC
    morphology   Scene records and the validated compartment graph
    channels     Gating kinetics, channel presets, channel state banks
    synapses     Spike detection and dual-exponential synapses
    simulation   Integrator, engine, schedulers, transport, analysis
"""

from .config import SimulationConfig, load_config

__version__ = "0.1.0"
