"""Exception hierarchy for scene loading and simulation.

Every error raised by dendra derives from DendraError. Scene errors are
fatal to one load attempt only; an IntegrationDivergence is fatal to the
current run; CommandChannelClosed ends a scheduler's worker.
"""


class DendraError(Exception):
    """Base class for all dendra errors."""


# ---------------------------------------------------------------------------
# Scene errors
# ---------------------------------------------------------------------------

class SceneError(DendraError):
    """A scene description was rejected.

    Attributes
    ----------
    record : str
        Identifier of the offending record (e.g. "compartment 'dend1'").
    """
    kind = "scene"

    def __init__(self, message, record=None):
        super().__init__(message)
        self.record = record


class DanglingReference(SceneError):
    """A record refers to a compartment that does not exist."""
    kind = "dangling_reference"


class Cycle(SceneError):
    """The parent chain of a compartment loops back on itself."""
    kind = "cycle"


class MissingField(SceneError):
    """A record lacks a required field."""
    kind = "missing_field"


class DuplicateId(SceneError):
    """Two records of the same kind share an id."""
    kind = "duplicate_id"


class InvalidValue(SceneError):
    """A field holds a value outside its valid domain."""
    kind = "invalid_value"


# ---------------------------------------------------------------------------
# Run-time errors
# ---------------------------------------------------------------------------

class IntegrationDivergence(DendraError):
    """A voltage or gating variable became non-finite or left its bounds.

    Attributes
    ----------
    quantity : str
        "voltage" or "gating".
    compartment_id : hashable
        Scene id of the first offending compartment.
    value : float
        The offending value.
    tick_index : int
        Tick at which the divergence was detected.
    """
    kind = "integration_divergence"

    def __init__(self, quantity, compartment_id, value, tick_index=None):
        self.quantity = quantity
        self.compartment_id = compartment_id
        self.value = value
        self.tick_index = tick_index
        super().__init__(
            f"{quantity} diverged in compartment {compartment_id!r}: "
            f"value {value!r} at tick {tick_index}"
        )


class CommandChannelClosed(DendraError):
    """The command channel was closed; the worker must shut down."""
    kind = "command_channel_closed"


class StateError(DendraError):
    """An operation is not allowed in the simulation's current state."""
    kind = "state"


class UnknownCompartment(DendraError):
    """A command referred to a compartment id absent from the loaded model."""
    kind = "unknown_compartment"
