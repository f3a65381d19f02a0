"""Error types raised by the persistence layer."""


class DatabaseError(Exception):
    """Base class for persistence-layer errors."""


class DatabaseUnavailableError(DatabaseError):
    """The selected backend is unconfigured or failed its availability probe."""

    def __init__(self, backend: str, reason: str = "database not available"):
        self.backend = backend
        self.reason = reason
        super().__init__(f"[{backend}] {reason}")


class UnknownFieldError(DatabaseError, ValueError):
    """A create/update payload names a field the entity does not declare."""

    def __init__(self, entity: str, fields):
        self.entity = entity
        self.fields = sorted(fields)
        super().__init__(f"Unknown {entity} field(s): {', '.join(self.fields)}")


class ImmutableFieldError(DatabaseError, ValueError):
    """A partial update tries to overwrite a field that may not be set directly."""

    def __init__(self, entity: str, fields):
        self.entity = entity
        self.fields = sorted(fields)
        super().__init__(f"Cannot update {entity} field(s): {', '.join(self.fields)}")


class SchemaMismatchError(DatabaseError):
    """Declared field tables disagree with the mapped models."""
