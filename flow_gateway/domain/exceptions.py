"""Domain-specific exceptions"""

from flow_gateway.domain.models import FailureType


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class IntentNotFoundError(DomainException):
    """Intent does not exist or belongs to another user"""

    pass


class PlanNotFoundError(DomainException):
    """Resolution plan does not exist or belongs to another user"""

    pass


class TransactionNotFoundError(DomainException):
    """Transaction does not exist or belongs to another user"""

    pass


class InvalidIntentError(DomainException):
    """Intent input failed validation (non-positive amount, unlinked biller)"""

    pass


class ConnectorError(DomainException):
    """Connector rail returned an error or is unreachable"""

    def __init__(self, message: str, failure_type: FailureType = FailureType.CONNECTOR_UNAVAILABLE):
        super().__init__(message)
        self.failure_type = failure_type


class SigningUnavailableError(DomainException):
    """Transaction signer could not produce a signature"""

    pass
