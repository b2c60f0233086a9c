"""Tests for the schedulers and the channels connecting them.

The cooperative scheduler is driven deterministically; threaded tests run
unthrottled (or lightly throttled) and poll with generous timeouts.
"""

import math
import queue
import threading
import time

import pytest

from dendra.config import SimulationConfig
from dendra.errors import CommandChannelClosed
from dendra.morphology import CompartmentRecord, Scene
from dendra.simulation import (
    CommandChannel, CooperativeScheduler, Pause, SimulationState, SnapshotChannel,
    ThreadedScheduler,
)
from dendra.simulation.engine import Diagnostic


def _scene():
    return Scene(compartments=(
        CompartmentRecord(id="a", length=200.0, radius=0.5, channels=("leak",)),
        CompartmentRecord(id="b", parent_id="a", length=200.0, radius=0.5,
                          channels=("leak",)),
    ), name="pair")


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class TestSnapshotChannel:

    def test_drop_oldest(self):
        channel = SnapshotChannel(capacity=3)
        for k in range(5):
            channel.publish(k)
        assert len(channel) == 3
        assert channel.n_dropped == 2
        assert channel.n_published == 5
        assert channel.drain() == [2, 3, 4]

    def test_receive_timeout(self):
        channel = SnapshotChannel(capacity=1)
        assert channel.receive(timeout=0.01) is None

    def test_receive_wakes_on_publish(self):
        channel = SnapshotChannel(capacity=1)
        threading.Timer(0.05, channel.publish, args=("late",)).start()
        assert channel.receive(timeout=5.0) == "late"

    def test_latest_discards_older(self):
        channel = SnapshotChannel(capacity=4)
        for k in range(3):
            channel.publish(k)
        assert channel.latest() == 2
        assert channel.latest() is None

    def test_diagnostics_are_never_dropped(self):
        channel = SnapshotChannel(capacity=1)
        for k in range(100):
            channel.report(Diagnostic("warning", "test", str(k)))
            channel.publish(k)
        assert len(channel.diagnostics()) == 100
        assert channel.diagnostics() == []

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            SnapshotChannel(capacity=0)


class TestCommandChannel:

    def test_fifo(self):
        channel = CommandChannel(capacity=4)
        for k in range(3):
            channel.send(k)
        assert channel.drain() == [0, 1, 2]
        assert channel.drain() == []

    def test_bounded(self):
        channel = CommandChannel(capacity=1)
        channel.send("first")
        with pytest.raises(queue.Full):
            channel.send("second", timeout=0.01)

    def test_blocking_drain_times_out(self):
        channel = CommandChannel()
        start = time.monotonic()
        assert channel.drain(block=True, timeout=0.05) == []
        assert time.monotonic() - start >= 0.04

    def test_closed_channel(self):
        channel = CommandChannel()
        channel.send("last")
        channel.close()
        with pytest.raises(CommandChannelClosed):
            channel.send("more")
        assert channel.drain() == ["last"]
        with pytest.raises(CommandChannelClosed):
            channel.drain()

    def test_close_wakes_blocked_drain(self):
        channel = CommandChannel()
        threading.Timer(0.05, channel.close).start()
        with pytest.raises(CommandChannelClosed):
            channel.drain(block=True, timeout=5.0)


# ---------------------------------------------------------------------------
# Cooperative scheduler
# ---------------------------------------------------------------------------

class TestCooperativeScheduler:

    def test_frame_runs_owed_ticks(self):
        sched = CooperativeScheduler(config=SimulationConfig(time_scale=0.01))
        sched.start(_scene())
        # 0.1 s wall at 0.01 s/s is 1 ms simulated: 40 ticks of 0.025 ms
        ran = sched.frame(0.1)
        assert 39 <= ran <= 40
        assert sched.state is SimulationState.RUNNING

    def test_fractional_ticks_carry_over(self):
        sched = CooperativeScheduler(config=SimulationConfig(time_scale=0.01))
        sched.start(_scene())
        total = sum(sched.frame(0.001) for _ in range(100))
        assert 39 <= total <= 40

    def test_frame_cap(self):
        config = SimulationConfig(time_scale=1.0, max_ticks_per_frame=50)
        sched = CooperativeScheduler(config=config)
        sched.start(_scene())
        assert sched.frame(10.0) == 50
        # the excess is not carried into the next frame
        assert sched.frame(0.0) == 0

    def test_unthrottled_runs_cap(self):
        config = SimulationConfig(time_scale=math.inf, max_ticks_per_frame=25)
        sched = CooperativeScheduler(config=config)
        sched.start(_scene())
        assert sched.frame(0.0) == 25

    def test_commands_apply_before_ticks(self):
        sched = CooperativeScheduler()
        sched.start(_scene())
        sched.advance(5)
        sched.pause()
        assert sched.frame(1.0) == 0
        assert sched.simulation.tick_index == 5
        sched.step_once()
        sched.step_once()
        sched.frame(0.0)
        assert sched.simulation.tick_index == 7
        sched.resume()
        assert sched.advance(3) == 3
        assert sched.simulation.tick_index == 10

    def test_set_time_scale_and_inject(self):
        sched = CooperativeScheduler()
        sched.start(_scene())
        sched.set_time_scale(math.inf)
        sched.inject_stimulus("a", 0.01, 1.0)
        sched.inject_stimulus("zzz", 0.01, 1.0)
        sched.advance(40)
        assert math.isinf(sched.simulation.time_scale)
        assert sched.simulation.voltages()["a"] > -65.0
        kinds = [d.kind for d in sched.snapshots.diagnostics()]
        assert kinds == ["unknown_compartment"]

    def test_load_scene_command(self):
        sched = CooperativeScheduler()
        sched.start(_scene())
        sched.advance(10)
        sched.load_scene(_scene())
        sched.frame(0.0)
        assert sched.state is SimulationState.PAUSED
        assert sched.simulation.tick_index == 0

    def test_shutdown(self):
        sched = CooperativeScheduler()
        sched.start(_scene())
        sched.advance(3)
        sched.shutdown()
        assert sched.state is SimulationState.STOPPED
        with pytest.raises(CommandChannelClosed):
            sched.stop()
        assert sched.frame(1.0) == 0


# ---------------------------------------------------------------------------
# Threaded scheduler
# ---------------------------------------------------------------------------

class TestThreadedScheduler:

    def test_runs_and_shuts_down(self):
        config = SimulationConfig(time_scale=math.inf, snapshot_capacity=4)
        sched = ThreadedScheduler(config=config).launch()
        try:
            sched.start(_scene())
            assert _wait_for(lambda: sched.simulation.tick_index >= 100)
            sched.pause()
            assert _wait_for(lambda: sched.state is SimulationState.PAUSED)
            paused_at = sched.simulation.tick_index
            time.sleep(0.05)
            assert sched.simulation.tick_index == paused_at
            sched.step_once()
            assert _wait_for(lambda: sched.simulation.tick_index == paused_at + 1)
        finally:
            sched.shutdown()
        assert not sched.is_alive
        assert sched.state is SimulationState.STOPPED
        assert sched.error is None

    def test_slow_consumer_sees_increasing_ticks(self):
        config = SimulationConfig(time_scale=math.inf, snapshot_capacity=2)
        sched = ThreadedScheduler(config=config).launch()
        try:
            sched.start(_scene())
            seen = []
            while len(seen) < 20:
                snap = sched.snapshots.receive(timeout=5.0)
                assert snap is not None
                seen.append(snap.tick_index)
                time.sleep(0.002)
        finally:
            sched.shutdown()
        assert all(b > a for a, b in zip(seen, seen[1:]))

    def test_pacing_throttles(self):
        # one batch of 10 ticks (0.25 ms) every 0.1 s of wall time
        config = SimulationConfig(time_scale=0.0025, batch_ticks=10)
        sched = ThreadedScheduler(config=config)
        assert sched.batch_interval() == pytest.approx(0.1)
        sched.launch()
        try:
            sched.start(_scene())
            time.sleep(0.35)
            ticks = sched.simulation.tick_index
        finally:
            sched.shutdown()
        assert 0 < ticks <= 100

    def test_invalid_command_reported(self):
        sched = ThreadedScheduler(config=SimulationConfig(time_scale=math.inf)).launch()
        received = []
        try:
            sched.send(Pause())
            assert _wait_for(lambda: received.extend(sched.snapshots.diagnostics())
                             or received)
        finally:
            sched.shutdown()
        (diagnostic,) = received
        assert diagnostic.kind == "state"

    def test_closing_stops_worker(self):
        sched = ThreadedScheduler(config=SimulationConfig(time_scale=math.inf)).launch()
        sched.start(_scene())
        assert _wait_for(lambda: sched.state is SimulationState.RUNNING)
        sched.commands.close()
        assert _wait_for(lambda: not sched.is_alive)
        assert sched.state is SimulationState.STOPPED

    def test_malformed_scene_keeps_previous_running(self):
        bad = Scene(compartments=(
            CompartmentRecord(id="a", length=10.0, radius=1.0, channels=(
                {"name": "x", "g_max": 1.0, "reversal": 0.0, "gates": ["m"]},)),
        ))
        sched = ThreadedScheduler(config=SimulationConfig(time_scale=math.inf)).launch()
        received = []
        try:
            sched.start(_scene())
            assert _wait_for(lambda: sched.simulation.tick_index >= 10)
            sched.load_scene(bad)
            assert _wait_for(lambda: received.extend(sched.snapshots.diagnostics())
                             or any(d.kind == "invalid_value" for d in received))
            ticks = sched.simulation.tick_index
            assert _wait_for(lambda: sched.simulation.tick_index > ticks)
            assert sched.is_alive
            assert sched.state is SimulationState.RUNNING
            assert sched.simulation.model.n_compartments == 2
        finally:
            sched.shutdown()
        assert sched.error is None
