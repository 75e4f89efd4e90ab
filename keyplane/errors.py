class KeyplaneError(Exception):
    """
    Base class for every failure surfaced by keyplane.

    Each subclass carries a stable `kind` tag so callers can report
    failures without matching on class names.
    """

    kind = "Error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class NotFoundError(KeyplaneError):
    """Unknown session identifier or layer id."""

    kind = "NotFound"


class ValidationError(KeyplaneError):
    """A state tier required by the operation is missing."""

    kind = "ValidationError"


class StorageError(KeyplaneError):
    """Reading, writing or creating a persisted document failed."""

    kind = "IOError"


class ParseError(KeyplaneError):
    """A persisted document is malformed or from an unsupported schema."""

    kind = "ParseError"
