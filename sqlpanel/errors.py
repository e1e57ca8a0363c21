from typing import Any, Dict, List, Optional


class SQLPanelError(Exception):
    """Base class for failures surfaced to API clients as a structured payload."""

    kind = "Error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.kind, "message": self.message}


class NotConnectedError(SQLPanelError):
    kind = "NotConnected"
    status_code = 409

    def __init__(self, message: str = "Database connection not established"):
        super().__init__(message)


class DatabaseConnectionError(SQLPanelError):
    kind = "ConnectionError"
    status_code = 400

    def __init__(self, reason: str):
        super().__init__(f"Connection failed: {reason}")
        self.reason = reason

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["details"] = self.reason
        return payload


class ValidationError(SQLPanelError):
    """Request rejected before any SQL was issued."""

    status_code = 400

    MISSING_COLUMNS = "MissingColumns"
    UNKNOWN_COLUMNS = "UnknownColumns"
    NO_PRIMARY_KEY = "NoPrimaryKey"
    NO_FIELDS_TO_UPDATE = "NoFieldsToUpdate"
    INVALID_COLUMNS = "InvalidColumns"
    INVALID_NAME = "InvalidName"
    EMPTY_QUERY = "EmptyQuery"
    MISSING_PARAMETERS = "MissingParameters"
    INVALID_FILE = "InvalidFile"
    INVALID_REQUEST = "InvalidRequest"

    def __init__(self, kind: str, message: str, columns: Optional[List[str]] = None):
        super().__init__(message)
        self.validation_kind = kind
        self.columns = list(columns or [])

    @property
    def missing_columns(self) -> List[str]:
        return self.columns if self.validation_kind == self.MISSING_COLUMNS else []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["error"] = "ValidationError"
        payload["kind"] = self.validation_kind
        if self.validation_kind == self.MISSING_COLUMNS:
            payload["missing_columns"] = self.columns
        elif self.columns:
            payload["columns"] = self.columns
        return payload


class NotFoundError(SQLPanelError):
    kind = "NotFound"
    status_code = 404


class DriverError(SQLPanelError):
    """Error reported by the MySQL server or the driver, passed through."""

    kind = "DriverError"
    status_code = 500

    # server error numbers the API layer cares about
    ER_DB_DROP_EXISTS = 1008
    ER_BAD_DB_ERROR = 1049
    ER_BAD_TABLE_ERROR = 1051
    ER_NO_SUCH_TABLE = 1146

    def __init__(self, message: str, code: Optional[int] = None, sqlstate: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.sqlstate = sqlstate

    @classmethod
    def from_driver(cls, exc: Exception) -> "DriverError":
        message = getattr(exc, "msg", None) or str(exc)
        return cls(message, code=getattr(exc, "errno", None), sqlstate=getattr(exc, "sqlstate", None))

    @property
    def is_missing_object(self) -> bool:
        return self.code in (
            self.ER_DB_DROP_EXISTS, self.ER_BAD_DB_ERROR, self.ER_BAD_TABLE_ERROR, self.ER_NO_SUCH_TABLE
        )

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["code"] = self.code
        if self.sqlstate:
            payload["sqlstate"] = self.sqlstate
        return payload


class ImportPartialFailure(SQLPanelError):
    """Raised by a strict import after the replay when some statements failed."""

    kind = "ImportPartialFailure"
    status_code = 422

    def __init__(self, report):
        super().__init__(
            f"{report.skipped_count} of {report.skipped_count + report.imported_count} statements failed"
        )
        self.report = report

    @property
    def skipped_statements(self) -> List[Dict[str, Any]]:
        return [r.to_dict() for r in self.report.results if not r.ok]

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update(self.report.to_dict())
        return payload


class ForbiddenError(SQLPanelError):
    kind = "Forbidden"
    status_code = 403


class PayloadTooLargeError(SQLPanelError):
    kind = "PayloadTooLarge"
    status_code = 413
