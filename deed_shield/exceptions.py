"""
Custom exception hierarchy for the receipt engine.

Only request-boundary and lifecycle problems are raised. Everything that
bears on a trust decision (bad seal, inactive notary, unreachable county
service) is captured as a CheckResult instead, so a verification always
completes and returns a result.
"""

from __future__ import annotations


class DeedShieldError(Exception):
    """Base exception for all engine failures."""

    def __init__(self, code: str, message: str, details: dict | None = None):
        self.code = code
        self.details = details or {}
        super().__init__(message)


class BundleInputError(DeedShieldError):
    """The verification request is malformed."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("BUNDLE_INPUT_INVALID", message, details)


class DocumentHashMismatch(DeedShieldError):
    """The supplied document bytes do not hash to the attested docHash."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("DOC_HASH_MISMATCH", message, details)


class ReceiptNotFoundError(DeedShieldError):
    """No receipt is stored under the requested id."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("RECEIPT_NOT_FOUND", message, details)


class AnchorProviderError(DeedShieldError):
    """The anchor provider could not publish a receipt hash."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("ANCHOR_FAILED", message, details)


class UnknownAnchorChainError(DeedShieldError):
    """A historical anchor proof names a chain with no registered provider."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("ANCHOR_CHAIN_UNKNOWN", message, details)


class CollaboratorUnavailable(DeedShieldError):
    """An external verifier could not be reached or kept failing past its retry cap."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__("VERIFIER_ERROR", message, details)
