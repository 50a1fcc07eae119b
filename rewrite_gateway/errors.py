class GatewayError(Exception):
    """Base class for every error raised by the gateway."""


class ConfigurationError(GatewayError):
    """Routing configuration that must not be served (bad regex, bad default host)."""


class ConfigFileError(ConfigurationError):
    """Configuration file missing, unreadable, or not matching the schema."""


class InvalidURLError(GatewayError, ValueError):
    """URL without a scheme or host."""


class ForwardError(GatewayError):
    """
    Target could not be reached (connection refused, DNS failure, timeout).

    A response with a non-2xx status is never a ForwardError.
    """
    def __init__(self, target: str, cause: BaseException):
        self.target = target
        self.cause = cause
        reason = str(cause) or type(cause).__name__
        super().__init__(f"{target}: {reason}")
