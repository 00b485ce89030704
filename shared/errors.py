"""
Error kinds raised across the Timesheet client and server.
"""


class TimesheetError(Exception):
    """Base class for all Timesheet errors"""
    pass


class ValidationError(TimesheetError):
    """Malformed input, rejected before any local or remote mutation"""
    pass


class TransportError(TimesheetError):
    """Network or availability failure talking to the remote authority"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class ConflictError(TimesheetError):
    """Remote version token no longer matches the expected one"""
    pass


class NotFoundError(TimesheetError):
    """Requested record does not exist"""
    pass
