"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ConfigurationError(DomainException):
    """Credentials or fixed parameters are missing or invalid"""

    pass


class ValidationError(DomainException):
    """Input to a domain function is malformed"""

    pass


class GatewayTransportError(DomainException):
    """Payment gateway could not be reached"""

    pass


class SignatureMismatchError(DomainException):
    """Inbound callback signature did not verify"""

    pass


class ExplainerUnavailableError(DomainException):
    """Text-generation service failed or returned an unusable response"""

    pass


class GatewayRejectedError(DomainException):
    """Payment gateway answered with a non-zero error code or a non-JSON body"""

    pass


class NotFoundError(DomainException):
    """Requested transaction or alert does not exist"""

    pass
