error_messages = {
    400: 'Invalid request.',
    401: 'Authentication required.',
    403: 'Access denied.',
    404: 'Resource not found.',
    405: 'Invalid request method.',
    409: 'Request conflicts with current state.',
    500: 'Internal server error.'
}

class HTTPError(Exception):
    def __init__(self, status_code: int, description: str = None):
        super().__init__(description)
        self.status_code = status_code
        self.description = description

def abort(status_code: int, description: str = None):
    raise HTTPError(status_code, description)


class LedgerError(Exception):
    """Base class for rejected admin/publisher actions; status_code maps it to HTTP"""
    status_code = 400

    def __init__(self, message: str = None):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__

class NotFound(LedgerError):
    """Requested record does not exist."""
    status_code = 404

class InvalidAmount(LedgerError):
    """Amount must be a positive number."""

class InsufficientBalance(LedgerError):
    """Requested amount exceeds the available balance."""

class PayoutsDisabled(LedgerError):
    """Payout requests are currently disabled."""
    status_code = 409

class PayoutNotPending(LedgerError):
    """Payout request has already been processed."""
    status_code = 409

class InvalidSponsor(LedgerError):
    """Sponsor details are invalid."""

class SponsorLimitReached(LedgerError):
    """Maximum of 3 active sponsors per link reached."""
    status_code = 409

class InvalidLink(LedgerError):
    """Link details are invalid."""
