"""Exception types shared by the engine and the server."""


class CadenceError(Exception):
    """Base class for errors raised by the cadence engine."""


class InvalidInputError(CadenceError, ValueError):
    """Malformed input: unparseable dates, non-numeric metrics, impossible ratios."""
