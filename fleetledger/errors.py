# fleetledger/errors.py
"""Failure taxonomy for ledger operations.

Every operation validates and authorizes before it mutates anything, so a
raised ``LedgerError`` never leaves partial writes behind. The HTTP layer
maps each class to its status code and stable ``code`` string.
"""


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.code)
        self.detail = detail or self.code


class NotFound(LedgerError):
    status_code = 404
    code = "not_found"


class Forbidden(LedgerError):
    status_code = 403
    code = "forbidden"


class InvalidState(LedgerError):
    status_code = 409
    code = "invalid_state"


class InvalidInput(LedgerError):
    status_code = 422
    code = "invalid_input"


class Conflict(LedgerError):
    status_code = 409
    code = "conflict"


class VehicleBusy(Conflict):
    code = "vehicle_busy"


class NotAuthenticated(LedgerError):
    status_code = 401
    code = "not_authenticated"
