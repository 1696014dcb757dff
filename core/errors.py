class JournalError(Exception):
    """Base class for all journal errors"""


class FormatError(JournalError):
    """The export document cannot be imported at all"""


class UnrecognizedFormat(FormatError):
    """Top-level shape matches none of the known export formats"""

    def __init__(self, shape: str):
        super().__init__(f"Could not determine export format: no known structure in top-level {shape}")
        self.shape = shape


class RecordError(JournalError):
    """A single export record is malformed and must be skipped"""


class ExternalServiceError(JournalError):
    """An enrichment source was unreachable or rejected the request"""

    def __init__(self, service: str, message: str, retryable: bool = False):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.retryable = retryable


class RateLimitError(ExternalServiceError):
    """An enrichment source refused the request because of its rate limit"""

    def __init__(self, service: str, message: str = 'rate limit exceeded'):
        super().__init__(service, message, retryable=True)


class ConstraintViolation(JournalError):
    """A row with the same natural key already exists"""

    def __init__(self, table: str, key: tuple):
        super().__init__(f"Duplicate key in {table}: {key}")
        self.table = table
        self.key = key
