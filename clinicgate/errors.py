# clinicgate/errors.py


class ClinicGateError(Exception):
    pass


class NotFoundError(ClinicGateError):
    pass


class SchedulingConflictError(ClinicGateError):
    """The requested interval overlaps another active appointment of the same patient."""

    def __init__(self, message: str = "There is a scheduling conflict with another appointment"):
        super().__init__(message)
        self.message = message


class ApiAuthError(ClinicGateError):
    """Authentication or authorization failure on an API route, rendered as JSON."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class InvalidScheduleError(ClinicGateError):
    pass
