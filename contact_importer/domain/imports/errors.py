"""
Exceptions raised by the contact import pipeline.
"""


class ContactImportError(Exception):
    """Base class for contact import failures."""


class ClassifierUnavailable(ContactImportError):
    """The mapping classifier is unconfigured, unreachable or timed out."""


class MalformedResponse(ContactImportError):
    """The classifier answered, but not in the expected mapping shape."""

    def __init__(self, message: str, raw_response: str = ""):
        self.raw_response = raw_response
        super().__init__(message)


class UnknownHeader(ContactImportError, KeyError):
    """A reconciler edit referenced a header outside the mapping."""

    def __init__(self, header: str):
        self.header = header
        super().__init__(f"Header '{header}' is not part of this mapping")

    def __str__(self) -> str:
        return self.args[0]


class EmptyLabel(ContactImportError, ValueError):
    """A new custom field was proposed with a blank label."""


class FieldMaterializationError(ContactImportError):
    """A proposed custom field could not be created; the import cannot start."""

    def __init__(self, label: str, cause: Exception):
        self.label = label
        self.cause = cause
        super().__init__(f"Failed to create custom field '{label}': {cause}")


class RowValidationError(ContactImportError):
    """A transformed row does not satisfy the configured validation policy."""


class UnsupportedFileType(ContactImportError, ValueError):
    """The uploaded file is neither CSV nor Excel."""


class EmptyFile(ContactImportError, ValueError):
    """The uploaded file contains no data rows."""
