"""Exceptions raised by the kinetics fusion pipeline."""


class FusionError(Exception):
    """Base exception for the fusion pipeline."""
    pass


class ConfigurationError(FusionError, ValueError):
    """Invalid or inconsistent configuration, raised at startup."""
    pass


class ContactCapacityError(FusionError):
    """More simultaneous contacts were requested than the estimator can hold."""
    pass


class EstimatorContractError(FusionError):
    """A call toward the primary estimator violates its input contract."""
    pass


class EmptyHistoryError(FusionError, IndexError):
    """Read attempted on a history buffer that holds no entry yet."""
    pass
