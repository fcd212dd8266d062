"""Error taxonomy shared by every pipeline component."""


class LogPipeError(Exception):
    """Base class for all errors raised by logpipe."""


class ValidationError(LogPipeError):
    """Raised at startup when configuration is malformed or unusable."""


class RecoverableError(LogPipeError):
    """Raised when a single structured record cannot be delivered."""


class FatalError(LogPipeError):
    """Raised when the pipeline cannot continue (file writes, rotation, reads)."""
