"""DayValet exceptions."""


class DayValetError(Exception):
    """Base class for DayValet errors."""
    pass


class ConfigError(DayValetError):
    """Raised when the configuration file is missing or invalid."""
    pass


class IdempotencyStoreError(DayValetError):
    """Raised when a fired-trigger key cannot be persisted."""
    pass


class ScheduleSourceError(DayValetError):
    """Raised when today's schedule snapshot cannot be loaded."""
    pass


class GoalSourceError(DayValetError):
    """Raised when active goals cannot be fetched."""
    pass
