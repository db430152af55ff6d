class TemporaError(Exception):
    """Base class for every failure raised by the toolkit."""


class ConfigurationError(TemporaError, ValueError):
    """An analysis parameter is outside its valid domain."""


class FormatMismatchError(TemporaError, ValueError):
    """A date/time string does not match any of the requested formats."""


class InsufficientDataError(TemporaError, ValueError):
    """The series is too short for the requested frequency, window or search."""


class DegenerateInputError(TemporaError):
    """The input makes the statistic undefined (zero variance, cancelling angles, ...)."""


class ConvergenceError(TemporaError):
    """An iterative fit did not settle within its iteration budget."""


NotConverged = ConvergenceError


class BudgetExceededError(TemporaError):
    """A search ran past its time budget."""
