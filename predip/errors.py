from __future__ import annotations


class PredictableIPError(Exception):
    """Base class for every error raised by predip."""


class ConfigurationError(PredictableIPError):
    """Network parameters are missing or cannot be turned into a pool."""


class PoolExhausted(PredictableIPError):
    pass


class ConflictError(PredictableIPError):
    """A versioned record changed between read and write."""


class NotFoundError(PredictableIPError):
    pass


class MalformedIdentity(PredictableIPError):
    """Member name does not end in ``-<ordinal>``."""


class AnnotationConflictExhausted(PredictableIPError):
    pass
