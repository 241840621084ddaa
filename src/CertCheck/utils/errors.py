from enum import Enum
from typing import Optional

class ErrorLevel(Enum):
    NONE    = 0
    WARN    = 1
    CRIT    = 2
    UNKNOWN = 3

    @property
    def label(self) -> str:
        match self:
            case ErrorLevel.NONE:
                return 'OK'
            case ErrorLevel.WARN:
                return 'WARNING'
            case ErrorLevel.CRIT:
                return 'CRITICAL'
            case ErrorLevel.UNKNOWN:
                return 'UNKNOWN'

    @property
    def exit_code(self) -> int:
        return self.value

    @property
    def is_terminal(self) -> bool:
        """CRIT and UNKNOWN stop the check pipeline; WARN is remembered and evaluation continues."""
        return self in (ErrorLevel.CRIT, ErrorLevel.UNKNOWN)

class CertCheckError(Exception):
    """Base class for failures that end a run with a single status line."""
    level = ErrorLevel.UNKNOWN

    def __init__(self, message: str, level: Optional[ErrorLevel] = None) -> None:
        super().__init__(message)
        self.message = message
        if level is not None:
            self.level = level

class ConfigurationError(CertCheckError):
    """Bad, missing or inconsistent options."""
    level = ErrorLevel.UNKNOWN

class TransportError(CertCheckError):
    """Connection refused, handshake fault, unreadable local file."""
    level = ErrorLevel.CRIT

class DeadlineExceeded(TransportError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f'Timeout after {timeout:g} seconds')
        self.timeout = timeout

class ParseError(CertCheckError):
    """Missing certificate marker or unparsable certificate data."""
    level = ErrorLevel.CRIT

class ExternalServiceError(CertCheckError):
    """Grading service or OCSP responder unreachable or returning an error status."""
    level = ErrorLevel.CRIT
