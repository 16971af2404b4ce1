"""Custom exceptions for database operations.

Only infrastructure faults are raised; expected business outcomes are
returned as result values by the services.
"""


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseConstraintError(DatabaseError):
    """Database constraint violation not explained by a known race."""
    pass


class DatabaseOperationError(DatabaseError):
    """General database operation failed."""
    pass
