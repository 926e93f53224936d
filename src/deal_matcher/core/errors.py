"""Domain errors."""


class DealMatcherError(Exception):
    """Base class for errors that can fail a run."""


class ExtractionError(DealMatcherError):
    """The extraction service could not produce a deal list."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class StoreError(DealMatcherError):
    """The persistent store could not be read or written."""
