"""Statechart error taxonomy

- DefinitionError: malformed chart, raised only while building a chart
- CorruptSnapshot: persisted state that does not fit the current chart

Unhandled events are not errors; see ``types.UnhandledEvent``.
"""


class LeadChartError(Exception):
    """Base class for leadchart errors."""


class DefinitionError(LeadChartError):
    """Raised when a chart definition is malformed.

    Attributes:
        path: qualified id of the offending node, when known
    """

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        if path:
            message = f"{path}: {message}"
        super().__init__(message)


class CorruptSnapshot(LeadChartError):
    """Raised when a persisted snapshot cannot be re-hydrated."""
