"""Spike detection.

A compartment spikes in a tick when its voltage was below threshold at
the start of the tick, is at or above threshold at the end, and it has not
spiked within the refractory window. The window keeps a slow or noisy
crossing from being counted more than once.
"""

from collections import deque
from dataclasses import dataclass
from typing import Any

import numpy as np


@dataclass(frozen=True)
class SpikeEvent:
    """A threshold crossing.

    Attributes
    ----------
    compartment_id : hashable
        Scene id of the spiking compartment.
    time : float
        Simulation time of the end of the tick in which it crossed (ms).
    """
    compartment_id: Any
    time: float

    def as_tuple(self):
        return (self.compartment_id, self.time)


class SpikeDetector:
    """Upward threshold-crossing detector with a refractory window.

    Parameters
    ----------
    compartment_ids : sequence
        Scene ids by arena index.
    threshold : float
        mV.
    refractory : float
        ms.
    history : int
        Number of recent events retained in `recent`.
    """

    def __init__(self, compartment_ids, threshold=-20.0, refractory=1.0, history=256):
        self.compartment_ids = list(compartment_ids)
        self.threshold = threshold
        self.refractory = refractory
        self.last_spike = np.full(len(self.compartment_ids), -np.inf)
        self.recent = deque(maxlen=history)
        self.n_spikes = 0

    def detect(self, v_old, v_new, t):
        """Find compartments that spiked between two committed voltage vectors.

        Parameters
        ----------
        v_old, v_new : np.ndarray
            Voltages at the start and end of the tick (mV).
        t : float
            Time at the end of the tick (ms).

        Returns
        -------
        (np.ndarray, list of SpikeEvent)
            Arena indices that spiked and the matching events.
        """
        crossed = (v_old < self.threshold) & (v_new >= self.threshold)
        if not np.any(crossed):
            return np.zeros(0, dtype=np.int64), []
        ready = (t - self.last_spike) >= self.refractory
        spiked = np.nonzero(crossed & ready)[0]
        self.last_spike[spiked] = t
        events = [SpikeEvent(self.compartment_ids[i], t) for i in spiked]
        self.recent.extend(events)
        self.n_spikes += len(events)
        return spiked, events

    def spikes_of(self, compartment_id):
        """Recent spike times of one compartment, oldest first."""
        return [e.time for e in self.recent if e.compartment_id == compartment_id]
