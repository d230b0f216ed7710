"""
Error Taxonomy
Exceptions raised by the vehicle data services and their HTTP status mapping
"""


class CommercialXError(Exception):
    """Base class for all service errors"""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'success': False, 'error': self.message}


class InvalidInputError(CommercialXError):
    """Malformed caller input, e.g. a VIN that is not 17 characters"""

    status_code = 400


class NotFoundError(CommercialXError):
    """The upstream registry has no record for the requested key"""

    status_code = 404


class ConfigNotFoundError(NotFoundError):
    """Requested vehicle configuration does not exist"""


class UpstreamUnavailableError(CommercialXError):
    """
    Network or protocol failure talking to a third-party source

    ``transient`` marks failures worth retrying (timeouts, dropped
    connections, 429 and 5xx responses).
    """

    status_code = 500

    def __init__(self, message, transient=False, status_code=None):
        super().__init__(message, status_code=status_code)
        self.transient = transient


class AuthenticationError(CommercialXError):
    """Bearer token missing, malformed or rejected by the identity provider"""

    status_code = 401
