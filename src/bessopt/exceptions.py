"""Custom exceptions for the battery dispatch optimizer."""

class BessOptError(Exception):
    """Base exception for optimizer errors."""
    pass

class InvalidInputError(BessOptError):
    """Exception raised for malformed or insufficient inputs."""
    pass

class InvalidParametersError(InvalidInputError):
    """Exception raised when the dispatch search space is infeasible."""
    pass

class ValidationTypeError(InvalidInputError):
    """Exception raised for type validation errors."""
    pass

class ValidationRangeError(InvalidInputError):
    """Exception raised for range validation errors."""
    pass

class NotConvergedError(BessOptError):
    """Exception raised when HMM training hits the iteration cap.

    The last parameter estimate is attached so callers can still use it.
    """

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result

class OptimizationError(BessOptError):
    """Exception raised when the evolutionary search yields no usable candidate."""
    pass

class SimulationInconsistencyError(BessOptError):
    """Exception raised when a simulated schedule violates its invariants."""
    pass

class ConfigurationError(BessOptError):
    """Exception raised for configuration errors."""
    pass
