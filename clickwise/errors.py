# clickwise/errors.py


class ClickwiseError(Exception):
    """Base class for every error this package raises on purpose."""


class ConfigurationError(ClickwiseError):
    """A sink or handler is missing the endpoint or credentials it needs."""


class SinkError(ClickwiseError):
    """The persistence endpoint answered but refused the operation."""


class UnknownEventError(ClickwiseError, KeyError):
    """No tracked event exists for the given fingerprint."""


class InvalidStatusError(ClickwiseError, ValueError):
    """A status outside pending/tracked/ignored was requested."""
