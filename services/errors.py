"""Error taxonomy shared by the calendar services and the HTTP layer."""


class CalendarError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"error": self.message}


class ValidationError(CalendarError):
    """Bad caller input. Never retried."""

    status_code = 400


class NotFoundError(CalendarError):
    status_code = 404


class PersistenceError(CalendarError):
    """Store failure, wrapped with the operation that hit it."""

    status_code = 500

    @classmethod
    def wrap(cls, operation, exc):
        return cls(f"Failed to {operation}: {exc}")
