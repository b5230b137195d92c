"""
Error taxonomy for the notarization core.

Every failure surfaced by the pipeline derives from ``NotaryError`` so that
callers can catch the whole family at the service boundary.

Tampering has no exception class. A document whose
content no longer matches its proof is a verification OUTCOME
(``Verdict.TAMPERED``), not a failure of the system.
"""


class NotaryError(RuntimeError):
    """Base class for notarization pipeline failures."""


class MalformedDocument(NotaryError):
    """
    Raised when input cannot be parsed as a PDF container, has zero pages,
    or exceeds configured resource limits.

    Fatal to the current operation. Never retried.
    """


class PayloadNotFound(NotaryError):
    """Raised when a document carries no embedded payload under the requested name."""


class PresentationError(NotaryError):
    """
    Raised when embed parameters are invalid (payment address, notice
    template, donation split, or an unserialisable proof).

    Always raised before the document is mutated.
    """


class IssuerError(NotaryError):
    """Raised when the external credential issuer fails or is not configured."""
