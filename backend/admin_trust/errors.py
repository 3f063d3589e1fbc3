"""Exception classes for the admin trust services."""


class AdminTrustError(Exception):
    """Base exception for admin trust services."""

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class AuditWriteError(AdminTrustError):
    """Raised when an audit event cannot be durably appended.

    Callers must treat the audited action as failed.
    """
    pass
