"""morphology — Neurons as trees of cylindrical compartments.

Scene records (compartments, synapses, stimulators) and the validated,
index-addressed compartment graph that the simulation runs on.
"""

from .records import (
    CompartmentRecord,
    SynapseRecord,
    StimulatorRecord,
    Scene,
)
from .model import (
    Compartment,
    Neuron,
    SynapseDef,
    StimulatorDef,
    Model,
    build_model,
    axial_conductance,
    lateral_area,
)
