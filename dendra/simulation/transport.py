"""Channels between the simulation worker and its consumers.

SnapshotChannel carries snapshots outward. It is bounded and never blocks
the producer: when full, the oldest snapshot is discarded and counted.
Diagnostics travel on an unbounded side queue of the same channel, so an
error report is never lost to backpressure.

CommandChannel carries commands inward. It is bounded and FIFO; once
closed, senders are refused and the receiving worker sees
CommandChannelClosed after the queue has been emptied.
"""

import queue
import threading
import time
from collections import deque

from dendra.errors import CommandChannelClosed
from dendra.utils import get_logger

LOG = get_logger("simulation.transport")


class SnapshotChannel:
    """Bounded drop-oldest snapshot queue with a lossless diagnostic queue.

    Parameters
    ----------
    capacity : int
        Maximum number of snapshots held.
    """

    def __init__(self, capacity=8):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._snapshots = deque(maxlen=capacity)
        self._diagnostics = deque()
        self._ready = threading.Condition()
        self.n_published = 0
        self.n_dropped = 0

    def __len__(self):
        with self._ready:
            return len(self._snapshots)

    def publish(self, snapshot):
        """Enqueue a snapshot, evicting the oldest one if full."""
        with self._ready:
            if len(self._snapshots) == self.capacity:
                self.n_dropped += 1
            self._snapshots.append(snapshot)
            self.n_published += 1
            self._ready.notify_all()

    def receive(self, timeout=None):
        """Oldest pending snapshot, waiting up to `timeout` seconds.

        Returns None when nothing arrives in time.
        """
        with self._ready:
            if not self._ready.wait_for(lambda: self._snapshots, timeout=timeout):
                return None
            return self._snapshots.popleft()

    def latest(self):
        """Newest pending snapshot, discarding everything older. None if empty."""
        with self._ready:
            if not self._snapshots:
                return None
            snapshot = self._snapshots.pop()
            self._snapshots.clear()
            return snapshot

    def drain(self):
        """All pending snapshots, oldest first."""
        with self._ready:
            items = list(self._snapshots)
            self._snapshots.clear()
            return items

    def report(self, diagnostic):
        with self._ready:
            self._diagnostics.append(diagnostic)
            self._ready.notify_all()

    def diagnostics(self):
        """All pending diagnostics, oldest first."""
        with self._ready:
            items = list(self._diagnostics)
            self._diagnostics.clear()
            return items


class CommandChannel:
    """Bounded FIFO of commands that can be closed by either side.

    Parameters
    ----------
    capacity : int
    """

    def __init__(self, capacity=64):
        self._queue = queue.Queue(maxsize=capacity)
        self._closed = threading.Event()

    @property
    def closed(self):
        return self._closed.is_set()

    def close(self):
        self._closed.set()

    def send(self, command, timeout=None):
        """Enqueue a command, waiting up to `timeout` seconds for room.

        Raises
        ------
        CommandChannelClosed
            If the channel is closed.
        queue.Full
            If no room was made in time.
        """
        if self.closed:
            raise CommandChannelClosed(f"Cannot send {command!r}: channel closed")
        self._queue.put(command, timeout=timeout)

    def drain(self, block=False, timeout=None):
        """Every pending command, oldest first.

        With block=True, wait up to `timeout` seconds for the first one.

        Raises
        ------
        CommandChannelClosed
            If the channel is closed and no command is left.
        """
        commands = []
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                commands.append(self._queue.get_nowait())
                continue
            except queue.Empty:
                pass
            if commands or not block:
                break
            if self.closed:
                break
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                break
            # Wake periodically to notice a close.
            wait = 0.05 if remaining is None else min(remaining, 0.05)
            try:
                commands.append(self._queue.get(timeout=wait))
            except queue.Empty:
                pass
        if not commands and self.closed:
            raise CommandChannelClosed("Command channel closed")
        return commands
