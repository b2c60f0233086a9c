"""Schedulers: who drives the engine, and when.

Both schedulers own one Simulation and one CommandChannel, drain every
pending command before each tick, and publish through the simulation's
SnapshotChannel. They differ only in where ticks run.

- ThreadedScheduler runs ticks on a dedicated worker thread, in batches
  paced against the wall clock by the time scale.
- CooperativeScheduler runs ticks inside frame() calls made by the host
  loop (a render loop, a notebook cell, a test), with a per-frame cap.

Pacing: a time scale s (simulated seconds per wall second) means a batch of
n ticks of dt ms is due every n * dt / 1000 / s wall seconds. math.inf
disables pacing.
"""

import abc
import math
import threading
import time

from dendra.errors import CommandChannelClosed
from dendra.simulation import commands as cmd
from dendra.simulation.engine import Simulation
from dendra.simulation.transport import CommandChannel
from dendra.utils import get_logger

LOG = get_logger("simulation.scheduler")


class Scheduler(abc.ABC):
    """Common command surface of the schedulers.

    Parameters
    ----------
    simulation : Simulation, optional
        A new one built from `config` if not given.
    config : SimulationConfig, optional
    """

    send_timeout = 1.0

    def __init__(self, simulation=None, config=None):
        self.simulation = simulation or Simulation(config)
        self.commands = CommandChannel(self.simulation.config.command_capacity)

    @property
    def config(self):
        return self.simulation.config

    @property
    def snapshots(self):
        """The outward SnapshotChannel."""
        return self.simulation.channel

    @property
    def state(self):
        return self.simulation.state

    def send(self, command):
        self.commands.send(command, timeout=self.send_timeout)

    def start(self, scene):
        self.send(cmd.Start(scene))

    def pause(self):
        self.send(cmd.Pause())

    def resume(self):
        self.send(cmd.Resume())

    def step_once(self):
        self.send(cmd.StepOnce())

    def set_time_scale(self, factor):
        self.send(cmd.SetTimeScale(factor))

    def inject_stimulus(self, compartment_id, current, duration):
        self.send(cmd.InjectStimulus(compartment_id, current, duration))

    def load_scene(self, scene):
        self.send(cmd.LoadScene(scene))

    def stop(self):
        self.send(cmd.Stop())

    def _apply(self, commands):
        for command in commands:
            self.simulation.handle(command)

    def _closed(self):
        LOG.info("Command channel closed; shutting down")
        self.simulation.stop()

    @abc.abstractmethod
    def shutdown(self):
        """Close the command channel and stop the simulation."""


class ThreadedScheduler(Scheduler):
    """Runs the simulation on its own daemon thread.

    Parameters
    ----------
    simulation : Simulation, optional
    config : SimulationConfig, optional
    idle_timeout : float
        Seconds an idle worker waits for a command before checking again.
    max_lag : int
        Batches the worker may fall behind schedule before it gives up
        catching up and resets its deadline.
    """

    def __init__(self, simulation=None, config=None, idle_timeout=0.1, max_lag=10):
        super().__init__(simulation, config)
        self.idle_timeout = idle_timeout
        self.max_lag = max_lag
        self.error = None
        self._thread = None

    @property
    def is_alive(self):
        return self._thread is not None and self._thread.is_alive()

    def launch(self):
        """Start the worker thread."""
        if self.is_alive:
            return self
        self._thread = threading.Thread(target=self._work, name="dendra-worker", daemon=True)
        self._thread.start()
        LOG.info("Worker launched")
        return self

    def shutdown(self, timeout=5.0):
        self.commands.close()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                LOG.warning("Worker did not exit within %s s", timeout)

    def batch_interval(self):
        """Wall-clock seconds one batch of ticks should take."""
        scale = self.simulation.time_scale
        if math.isinf(scale):
            return 0.0
        return self.config.batch_ticks * self.config.dt * 1.0e-3 / scale

    def _work(self):
        sim = self.simulation
        deadline = None
        in_batch = 0
        try:
            while True:
                self._apply(self.commands.drain(block=not sim.is_running,
                                                timeout=self.idle_timeout))
                if not sim.is_running:
                    deadline, in_batch = None, 0
                    continue

                sim.advance(1)
                in_batch += 1
                if in_batch < self.config.batch_ticks:
                    continue

                in_batch = 0
                interval = self.batch_interval()
                if interval == 0.0:
                    continue
                now = time.monotonic()
                deadline = (deadline or now) + interval
                if now - deadline > self.max_lag * interval:
                    LOG.debug("Worker fell behind by %.3f s; resetting schedule",
                              now - deadline)
                    deadline = now
                self._wait_until(deadline)
        except CommandChannelClosed:
            self._closed()
        except Exception as err:
            self.error = err
            LOG.error("Worker failed: %s", err)
            sim.report("error", "worker", f"worker failed: {err}")
            sim.stop()
            raise

    def _wait_until(self, deadline):
        """Sleep until `deadline`, handling commands that arrive meanwhile."""
        while self.simulation.is_running:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self._apply(self.commands.drain(block=True, timeout=remaining))


class CooperativeScheduler(Scheduler):
    """Runs the simulation inside the host's own loop.

    Call frame() once per presentation frame with the wall time elapsed
    since the previous frame. Ticks owed beyond config.max_ticks_per_frame
    are dropped rather than carried into later frames.
    """

    def __init__(self, simulation=None, config=None):
        super().__init__(simulation, config)
        self._owed = 0.0

    def shutdown(self):
        self.commands.close()
        self._closed()

    def frame(self, elapsed_seconds):
        """Run the ticks owed for `elapsed_seconds` of wall time.

        Returns
        -------
        int
            Number of ticks run.
        """
        sim = self.simulation
        cap = self.config.max_ticks_per_frame
        try:
            self._apply(self.commands.drain())
            if not sim.is_running:
                self._owed = 0.0
                return 0

            if math.isinf(sim.time_scale):
                owed = cap
                self._owed = 0.0
            else:
                self._owed += elapsed_seconds * 1.0e3 * sim.time_scale / self.config.dt
                owed = int(self._owed)
                self._owed -= owed
                if owed > cap:
                    LOG.debug("Frame owed %d ticks; capped at %d", owed, cap)
                    owed = cap
            return self._run(owed, drain_first=False)
        except CommandChannelClosed:
            self._closed()
            return 0

    def advance(self, n_ticks):
        """Run n_ticks regardless of wall time, draining commands before each.

        Returns
        -------
        int
            Number of ticks run.
        """
        try:
            return self._run(n_ticks, drain_first=True)
        except CommandChannelClosed:
            self._closed()
            return 0

    def _run(self, n_ticks, drain_first):
        sim = self.simulation
        done = 0
        for k in range(n_ticks):
            if drain_first or k > 0:
                self._apply(self.commands.drain())
            if not sim.is_running:
                break
            done += sim.advance(1)
        return done
