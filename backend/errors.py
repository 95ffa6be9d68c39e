# errors.py — Error taxonomy shared by the task store, access gate and routers
#
# Each error carries the HTTP status it maps to; main.py installs a single
# exception handler that renders them as {"detail": ..., "request_id": ...}.


class PlanetsError(Exception):
    """Base class for every expected failure of a planet-scoped operation"""

    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class NotFoundError(PlanetsError):
    status_code = 404
    default_detail = "Resource not found"


class ForbiddenError(PlanetsError):
    status_code = 403
    default_detail = "You do not have permission to perform this action"


class ConflictError(PlanetsError):
    status_code = 409
    default_detail = "Conflicting state"


class InvalidInputError(PlanetsError):
    status_code = 400
    default_detail = "Invalid input"


class InternalError(PlanetsError):
    status_code = 500
    default_detail = "Internal server error. Contact support or try again later."
