"""Exceptions raised by RumpyTrain."""


class RumpyTrainError(Exception):
    """Base class for RumpyTrain errors."""


class LoadError(RumpyTrainError):
    """A GTFS reference table is missing or unreadable."""

    def __init__(self, table: str, reason: str = ""):
        self.table = table
        message = f"Could not load {table}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class RowParseError(RumpyTrainError):
    """A single reference row is malformed."""


class FetchError(RumpyTrainError):
    """A real-time feed could not be fetched or decoded."""


class NoDataError(RumpyTrainError):
    """A real-time feed contained no entities."""
