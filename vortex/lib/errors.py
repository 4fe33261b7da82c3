"""
Error taxonomy for wallet scanning and remediation.

Transport-class failures are retried close to where they happen and are
turned into status fields before they can unwind a whole scan. Only
structurally invalid input is allowed to fail a top-level call.
"""

from typing import List, Optional


class VortexError(Exception):
    """Base class for all errors raised by this package."""

    pass


class ChainUnavailable(VortexError):
    """A chain RPC endpoint could not be reached, timed out or answered garbage."""

    def __init__(self, message: str, chain: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.chain = chain
        self.status_code = status_code


class RpcResponseError(VortexError):
    """The endpoint answered, but with a JSON-RPC error object (e.g. a reverted call)."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


class UnsupportedChain(VortexError):
    """The chain is not configured or has no mapping for the requested service."""

    pass


class InvalidAddress(VortexError):
    """The address does not belong to any configured chain family."""

    pass


class EnrichmentError(VortexError):
    """The token-security service failed after all retries."""

    pass


class CacheUnavailable(VortexError):
    """The cache backing store could not be reached."""

    pass


class ValidationFailure(VortexError):
    """A batch action contains tokens that are not eligible for it."""

    def __init__(self, message: str, reasons: Optional[List[str]] = None):
        super().__init__(message)
        self.reasons = reasons or []


class ExecutionFailure(VortexError):
    """Building or submitting a sponsored bundle failed."""

    pass
