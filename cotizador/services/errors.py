"""Exceptions raised by the section extraction and merge engine."""


class MergeEngineError(Exception):
    """Base exception for engine errors."""
    pass


class MergeError(MergeEngineError):
    """An OOXML package merge could not produce a valid package."""
    pass


class StructuralMergeError(MergeError):
    """Body or relationship boundaries are missing, or the spliced body is malformed."""
    pass


class ResourceReconciliationError(MergeError):
    """Merged content references a relationship id that cannot be mapped."""
    pass


class PackageFormatError(MergeError):
    """Input or output bytes are not a ZIP package."""
    pass


class ExtractionError(MergeEngineError):
    """A Word package could not be read for text extraction."""
    pass


class SectionNotFoundError(MergeEngineError):
    """No section with the requested order exists in the document."""

    def __init__(self, order: int, available: list[int] | None = None):
        self.order = order
        self.available = list(available or [])
        super().__init__(
            f"Section {order} not found (available: {', '.join(map(str, self.available)) or 'none'})"
        )


class RemoteDocumentError(MergeEngineError):
    """The remote structured-document API failed; the whole pass must be restarted."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
