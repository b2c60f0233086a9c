"""The compartmental simulation engine.

A Simulation owns everything built from one scene (model, channel bank,
synapse bank, spike detector, integrator, current sources) and advances it
one fixed tick at a time. It does not own a thread or a clock: schedulers
decide when ticks run and feed it commands through handle().

Per tick k (t_k = k * dt):

    1. channel gates advance at the committed voltages
    2. synaptic triggers due at tick k are applied
    3. membrane, synaptic and injected currents are gathered
    4. the integrator computes V(t_{k+1}) into a fresh array
    5. synapse states decay; voltages and gates are checked
    6. threshold crossings are detected and trigger outgoing synapses
    7. the new voltages are committed and a snapshot may be published

States:

    STOPPED --start--> RUNNING --pause--> PAUSED --resume--> RUNNING
    any --stop--> STOPPED;  any --load_scene--> PAUSED

An IntegrationDivergence forces STOPPED and is reported as an error
diagnostic. Invalid transitions raise StateError when called directly and
become warning diagnostics when they arrive as commands.
"""

import enum
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Optional

import numpy as np

from dendra.channels.kinetics import ChannelBank
from dendra.config import SimulationConfig
from dendra.errors import (
    DendraError, IntegrationDivergence, InvalidValue, StateError,
)
from dendra.morphology.model import build_model
from dendra.morphology.records import Scene
from dendra.scene.io import parse_scene
from dendra.simulation import commands as cmd
from dendra.simulation.integrator import CableIntegrator, check_voltages
from dendra.simulation.stimulus import StimulusSet
from dendra.simulation.transport import SnapshotChannel
from dendra.synapses.dual_exp import SynapseBank
from dendra.synapses.spikes import SpikeDetector
from dendra.utils import get_logger

LOG = get_logger("simulation.engine")


class SimulationState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(frozen=True)
class Snapshot:
    """Voltages of every compartment at one tick boundary.

    Attributes
    ----------
    tick_index : int
        Number of ticks completed.
    sim_time : float
        tick_index * dt (ms).
    compartment_voltages : Mapping
        Compartment id -> membrane voltage (V).
    spikes : tuple of (id, float)
        Spikes detected since the previous snapshot, as (id, sim_time ms).
    """
    tick_index: int
    sim_time: float
    compartment_voltages: Any
    spikes: tuple = ()

    def voltage(self, compartment_id):
        return self.compartment_voltages[compartment_id]

    def to_dict(self):
        return {
            "tick_index": self.tick_index,
            "sim_time": self.sim_time,
            "compartment_voltages": dict(self.compartment_voltages),
            "spikes": [list(s) for s in self.spikes],
        }


@dataclass(frozen=True)
class Diagnostic:
    """A warning or error reported by the engine.

    Attributes
    ----------
    severity : str
        "warning" or "error".
    kind : str
        Machine-readable category, e.g. "integration_divergence".
    message : str
    tick_index, sim_time : optional
        Clock position when it was raised, if a scene was loaded.
    """
    severity: str
    kind: str
    message: str
    tick_index: Optional[int] = None
    sim_time: Optional[float] = None


@dataclass
class Run:
    """Everything built from one scene, plus its continuous state."""
    scene: Any
    model: Any
    channels: ChannelBank
    synapses: SynapseBank
    detector: SpikeDetector
    integrator: CableIntegrator
    stimuli: StimulusSet
    v: np.ndarray
    tick_index: int = 0
    pending_spikes: list = field(default_factory=list)


def build_run(scene, config):
    """Build and validate everything needed to simulate a scene.

    Nothing is shared with any previous run; a SceneError leaves no trace.
    A plain mapping is parsed as a scene description first.
    """
    if isinstance(scene, Mapping):
        scene = parse_scene(scene)
    if not isinstance(scene, Scene):
        raise InvalidValue(f"Expected a Scene or a scene mapping, "
                           f"got {type(scene).__name__}")
    model = build_model(scene, config)
    v = model.initial_voltages
    return Run(
        scene=scene,
        model=model,
        channels=ChannelBank.from_model(model, v),
        synapses=SynapseBank.from_model(model, config.dt),
        detector=SpikeDetector(model.ids, threshold=config.spike_threshold,
                               refractory=config.refractory,
                               history=config.spike_history),
        integrator=CableIntegrator.from_model(model),
        stimuli=StimulusSet.from_model(model),
        v=v,
    )


class Simulation:
    """A single-scene compartmental simulation.

    Parameters
    ----------
    config : SimulationConfig, optional
    channel : SnapshotChannel, optional
        Outward channel for snapshots and diagnostics. A new one sized by
        config.snapshot_capacity if not given.
    """

    def __init__(self, config=None, channel=None):
        self.config = config or SimulationConfig()
        if channel is None:
            channel = SnapshotChannel(self.config.snapshot_capacity)
        self.channel = channel
        self.state = SimulationState.STOPPED
        self.time_scale = self.config.time_scale
        self.run = None
        self.last_error = None

    # -----------------------------------------------------------------------
    # Inspection
    # -----------------------------------------------------------------------

    @property
    def is_running(self):
        return self.state is SimulationState.RUNNING

    @property
    def model(self):
        return self.run.model if self.run else None

    @property
    def tick_index(self):
        return self.run.tick_index if self.run else 0

    @property
    def sim_time(self):
        """Simulated time (ms), computed from the tick count."""
        return self.tick_index * self.config.dt

    def voltages(self):
        """Committed voltages by compartment id (mV)."""
        if self.run is None:
            return {}
        return dict(zip(self.run.model.ids, self.run.v.tolist()))

    def gate_values(self, compartment_id):
        """Gate values of every channel in one compartment."""
        self._require_run("gate_values")
        return self.run.channels.gate_values(self.run.model.index_of(compartment_id))

    def recent_spikes(self):
        """Recent spike events, oldest first."""
        return list(self.run.detector.recent) if self.run else []

    def snapshot(self):
        """A snapshot of the committed state, carrying the pending spikes."""
        run = self.run
        volts = (run.v * 1.0e-3).tolist()
        spikes = tuple(e.as_tuple() for e in run.pending_spikes)
        run.pending_spikes = []
        return Snapshot(
            tick_index=run.tick_index,
            sim_time=self.sim_time,
            compartment_voltages=MappingProxyType(
                dict(zip(run.detector.compartment_ids, volts))),
            spikes=spikes,
        )

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def start(self, scene):
        """Build a scene and run it from t = 0. Only valid while stopped."""
        if self.state is not SimulationState.STOPPED:
            raise StateError(f"start is only valid while stopped, not {self.state.value}")
        self._install(build_run(scene, self.config))
        self._transition(SimulationState.RUNNING, "start")

    def pause(self):
        if self.state is not SimulationState.RUNNING:
            raise StateError(f"pause is only valid while running, not {self.state.value}")
        self._transition(SimulationState.PAUSED, "pause")

    def resume(self):
        if self.state is not SimulationState.PAUSED:
            raise StateError(f"resume is only valid while paused, not {self.state.value}")
        self._transition(SimulationState.RUNNING, "resume")

    def step_once(self):
        """Run exactly one tick while paused. Returns the number of ticks run."""
        if self.state is not SimulationState.PAUSED:
            raise StateError(f"step_once is only valid while paused, not {self.state.value}")
        return self._guarded_tick()

    def set_time_scale(self, factor):
        factor = float(factor)
        if math.isnan(factor) or factor <= 0:
            raise InvalidValue(f"time scale must be positive, got {factor!r}")
        self.time_scale = factor
        LOG.debug("Time scale set to %s", factor)

    def load_scene(self, scene):
        """Replace the current scene; the new one waits, paused, at t = 0.

        The new scene is fully built before anything is replaced: on a
        SceneError the previous scene and state are untouched.
        """
        run = build_run(scene, self.config)
        self._install(run)
        self._transition(SimulationState.PAUSED, "load_scene")

    def inject_stimulus(self, compartment_id, current, duration):
        """Hold `current` (nA) on a compartment for `duration` ms from now."""
        self._require_run("inject_stimulus")
        if self.state is SimulationState.STOPPED:
            raise StateError("inject_stimulus is not valid while stopped")
        current, duration = float(current), float(duration)
        if not (math.isfinite(current) and math.isfinite(duration) and duration > 0):
            raise InvalidValue(f"invalid stimulus: current {current!r}, duration {duration!r}")
        target = self.run.model.index_of(compartment_id)
        self.run.stimuli.inject(target, current, self.sim_time, duration)
        LOG.info("Injecting %s nA into %r for %s ms at t=%s ms",
                 current, compartment_id, duration, self.sim_time)

    def stop(self):
        """Stop running. The last run stays available for inspection."""
        if self.state is not SimulationState.STOPPED:
            self._transition(SimulationState.STOPPED, "stop")

    # -----------------------------------------------------------------------
    # Driving
    # -----------------------------------------------------------------------

    def handle(self, command):
        """Apply one command. Refused commands become warning diagnostics."""
        try:
            self._dispatch(command)
        except DendraError as err:
            LOG.warning("Refused %s: %s", command.name, err)
            self.report("warning", err.kind, f"{command.name}: {err}")
            return False
        return True

    def _dispatch(self, command):
        if isinstance(command, cmd.Start):
            self.start(command.scene)
        elif isinstance(command, cmd.Pause):
            self.pause()
        elif isinstance(command, cmd.Resume):
            self.resume()
        elif isinstance(command, cmd.StepOnce):
            self.step_once()
        elif isinstance(command, cmd.SetTimeScale):
            self.set_time_scale(command.factor)
        elif isinstance(command, cmd.InjectStimulus):
            self.inject_stimulus(command.compartment_id, command.current, command.duration)
        elif isinstance(command, cmd.LoadScene):
            self.load_scene(command.scene)
        elif isinstance(command, cmd.Stop):
            self.stop()
        else:
            raise TypeError(f"Not a command: {command!r}")

    def advance(self, n_ticks=1):
        """Run up to n_ticks while running.

        Stops early if the state leaves RUNNING (a divergence).

        Returns
        -------
        int
            Number of ticks actually run.
        """
        done = 0
        while done < n_ticks and self.is_running:
            done += self._guarded_tick()
        return done

    def tick(self):
        """Advance the loaded scene by one timestep.

        Raises
        ------
        IntegrationDivergence
            The voltages, the clock and the tick's spikes are not committed
            when it is raised. Gate and synaptic state already hold the
            failed step; the stopped run is kept for inspection only.
        """
        run = self.run
        dt = self.config.dt
        k = run.tick_index

        run.channels.update(run.v, dt)
        run.synapses.deliver(k)
        g_channels, ge_channels = run.channels.conductances()
        g_synapses, ge_synapses = run.synapses.conductances()
        i_stim = run.stimuli.currents(k * dt)

        v_new = run.integrator.step(run.v, dt,
                                    g_channels + g_synapses,
                                    ge_channels + ge_synapses,
                                    i_stim)
        run.synapses.decay()
        check_voltages(v_new, self.config.voltage_bound,
                       run.detector.compartment_ids, k + 1)
        run.channels.check(k + 1)

        spiked, events = run.detector.detect(run.v, v_new, (k + 1) * dt)
        run.synapses.on_spikes(spiked, k + 1)
        run.pending_spikes.extend(events)

        run.v = v_new
        run.tick_index = k + 1
        if run.tick_index % self.config.snapshot_every == 0:
            self.channel.publish(self.snapshot())

    def _guarded_tick(self):
        try:
            self.tick()
        except IntegrationDivergence as err:
            self.last_error = err
            LOG.error("Integration diverged: %s", err)
            self.report("error", err.kind, str(err))
            self._transition(SimulationState.STOPPED, "divergence")
            return 0
        return 1

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def report(self, severity, kind, message):
        """Publish a diagnostic on the outward channel."""
        diagnostic = Diagnostic(
            severity=severity,
            kind=kind,
            message=message,
            tick_index=self.tick_index if self.run else None,
            sim_time=self.sim_time if self.run else None,
        )
        self.channel.report(diagnostic)
        return diagnostic

    def _install(self, run):
        self.run = run
        self.last_error = None
        LOG.info("Loaded %s", run.model.summary())
        ratio = run.integrator.stability_ratio(self.config.dt)
        if ratio > self.config.stability_bound:
            LOG.warning("Axial stability ratio %.3g exceeds %.3g at dt=%s ms",
                        ratio, self.config.stability_bound, self.config.dt)
            self.report("warning", "stability",
                        f"axial stability ratio {ratio:.3g} exceeds "
                        f"{self.config.stability_bound:.3g}; reduce dt")
        self.channel.publish(self.snapshot())

    def _require_run(self, operation):
        if self.run is None:
            raise StateError(f"{operation} needs a loaded scene")

    def _transition(self, state, reason):
        LOG.info("%s -> %s (%s)", self.state.value, state.value, reason)
        self.state = state
