"""
EDI Error Taxonomy

Every failure inside the exchange engine is one of these types. The
transaction pipelines catch them at their boundary and write the message
to the owning transaction's ``error_message``; the API layer maps them
to HTTP status codes.

    ConfigurationError  → 400  (missing partner, credentials, bad map)
    NotFoundError       → 404
    InvalidStateError   → 409  (e.g. acknowledging a failed transaction)
    FormatError         → 422  (malformed X12 / CSV / XML / JSON)
"""


class EdiError(Exception):
    """Base exception for all exchange-engine errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(EdiError):
    """Partner, settings or map configuration cannot support the operation."""


class NotFoundError(EdiError):
    """Resource was not found for this tenant."""

    def __init__(self, resource_type: str, identifier) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class InvalidStateError(EdiError):
    """Requested transition is not allowed from the transaction's current status."""


class FormatError(EdiError):
    """Document content could not be parsed in its declared format."""


class MalformedInterchange(FormatError):
    """X12 interchange is structurally invalid.

    ``segment_index`` is the 0-based position of the offending segment and
    ``offset`` the character offset where that segment starts.
    """

    def __init__(self, message: str, segment_index: int = 0, offset: int = 0) -> None:
        super().__init__(
            f"{message} (segment {segment_index}, offset {offset})",
            details={"segment_index": segment_index, "offset": offset},
        )
        self.segment_index = segment_index
        self.offset = offset


class TransformError(EdiError):
    """Field mapping or extraction failed for a specific value."""


class TransportError(EdiError):
    """AS2 / SFTP delivery failed (HTTP error, connect failure, timeout)."""


class IntegrityError(EdiError):
    """ERP collaborator rejected the document."""
