"""Database exceptions."""

class DatabaseError(Exception):
    """Raised when a store operation fails."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema files are invalid or cannot be applied."""
    pass
