from typing import Any, Dict, Optional


class ScanError(Exception):
    """Base class for every failure raised by a segmented scan."""


class InvalidExpressionError(ScanError):
    """A filter predicate was supplied but its expression text is empty."""

    def __init__(self, message: str = "filter expression must not be empty"):
        super().__init__(message)


class TransportError(ScanError):
    """
    A page fetch failed at the network or service level.
    The original botocore exception is kept as __cause__.
    """

    def __init__(self, message: str, segment: Optional[int] = None,
                 error_code: Optional[str] = None):
        super().__init__(message)
        self.segment = segment
        self.error_code = error_code


class DecodeError(ScanError):
    """A raw item could not be converted into the target record type."""

    def __init__(self, message: str, segment: Optional[int] = None,
                 position: Optional[int] = None,
                 item: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.segment = segment
        self.position = position
        self.item = item
