from __future__ import annotations


class AnnotaloopError(Exception):
    """Base class for errors surfaced to callers of the export engine."""


class MalformedDocumentError(AnnotaloopError):
    """The source bytes cannot be opened as a paginated document."""


class ExportError(AnnotaloopError):
    """Writing or merging the exported document failed."""
