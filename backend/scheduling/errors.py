"""Error types raised by the scheduling engine."""


class SchedulingError(Exception):
    """Base class for scheduling failures that callers can report to users."""


class InvalidRangeError(SchedulingError):
    """A time range, duration, break window or horizon is not usable."""


class AmbiguousRuleError(SchedulingError):
    """An availability rule sets both or neither of ``date`` and ``day_of_week``."""


class ConflictError(SchedulingError):
    """The database already holds a slot for the same professional, date and start time."""


class PartialBatchFailure(SchedulingError):
    """Some writes of a materialization batch failed."""

    def __init__(self, result):
        self.result = result
        super().__init__(f'{result.created} slots created, {result.failed} failed')
