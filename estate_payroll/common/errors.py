# estate_payroll/common/errors.py
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from estate_payroll.common.http import fail
from estate_payroll.services.deductions.errors import CalculationError, ConfigurationError


class APIError(Exception):
    """Custom API Error class."""
    def __init__(self, code, message, status_code=400, payload=None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.payload = payload


def register_error_handlers(app):
    @app.errorhandler(APIError)
    def _api_error(e: APIError):
        return fail(message=e.message, status=e.status_code, code=e.code, detail=e.payload)

    @app.errorhandler(ConfigurationError)
    def _config(e: ConfigurationError):
        app.logger.error("deduction configuration error: %s", e.message)
        return fail(message=e.message, status=409, code=e.code, detail=e.detail)

    @app.errorhandler(CalculationError)
    def _calc(e: CalculationError):
        return fail(message=e.message, status=422, code=e.code, detail=e.detail)

    @app.errorhandler(HTTPException)
    def _http(e: HTTPException):
        return fail(e.description or e.name, status=e.code or 500)

    @app.errorhandler(IntegrityError)
    def _dup(e: IntegrityError):
        return fail("Duplicate or FK constraint failed", status=409, code="CONSTRAINT_ERROR")

    @app.errorhandler(Exception)
    def _500(e: Exception):
        app.logger.exception(e)
        return fail("Internal server error", status=500)
