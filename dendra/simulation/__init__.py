"""simulation — Integrating, clocking and streaming a compartmental model.

The engine advances one scene tick by tick; the schedulers decide when
ticks run (on a worker thread or inside a host loop) and connect the
engine to the outside through a bounded command channel inward and a
drop-oldest snapshot channel outward.
"""

from .commands import (
    Command,
    Start,
    Pause,
    Resume,
    StepOnce,
    SetTimeScale,
    InjectStimulus,
    LoadScene,
    Stop,
)
from .integrator import CableIntegrator, check_voltages
from .stimulus import (
    PeriodicStimulator,
    InjectedStimulus,
    StimulusSet,
    build_stimulator,
)
from .transport import SnapshotChannel, CommandChannel
from .engine import (
    Simulation,
    SimulationState,
    Snapshot,
    Diagnostic,
    build_run,
)
from .scheduler import Scheduler, ThreadedScheduler, CooperativeScheduler
from .analysis import (
    voltage_traces,
    spike_table,
    firing_rates,
    interspike_intervals,
)
