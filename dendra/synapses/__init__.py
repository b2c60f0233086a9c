"""synapses — Spike detection and chemical synapses.

Spikes are upward threshold crossings gated by a refractory window.
Synapses turn presynaptic spikes into delayed, summating dual-exponential
conductance changes on their postsynaptic compartment.
"""

from .spikes import SpikeEvent, SpikeDetector
from .dual_exp import SynapseBank, peak_factor, delay_in_ticks
