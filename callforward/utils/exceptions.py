"""
Custom exception classes for the Call Forward Service.
"""


class CallForwardServiceException(Exception):
    """Base exception for all call forward service errors."""
    pass


class ConfigurationException(CallForwardServiceException):
    """Exception raised for configuration errors."""
    pass


class ValidationException(CallForwardServiceException):
    """Exception raised for validation errors."""
    pass


class UnknownContextException(CallForwardServiceException):
    """Exception raised when a context name is not part of the registry."""

    def __init__(self, context_name: str):
        super().__init__(f"The context with name {context_name} does not exist in the registry")
        self.context_name = context_name


class OverlapConflictException(CallForwardServiceException):
    """Exception raised when two call forwards from one extension share a context."""

    def __init__(self, source, context, existing_fwd_id: int = None):
        """
        Initialize overlap conflict.

        Args:
            source: Extension both call forwards start from
            context: First Context found in both call forwards
            existing_fwd_id: Id of the call forward already holding the context
        """
        super().__init__(
            f"There is already a call forward from {source} active in context {context}."
        )
        self.source = source
        self.context = context
        self.existing_fwd_id = existing_fwd_id


class CallForwardNotFoundException(CallForwardServiceException):
    """Exception raised when no call forward exists for an id."""

    def __init__(self, fwd_id: int):
        super().__init__(f"Call forward {fwd_id} does not exist")
        self.fwd_id = fwd_id


class DatabaseException(CallForwardServiceException):
    """Exception raised for database errors. Safe to retry."""
    pass


class AGIException(CallForwardServiceException):
    """Base exception for FastAGI exchange errors."""
    pass


class AGIProtocolException(AGIException):
    """Exception raised when the peer answers with an unusable response."""

    def __init__(self, message: str, code: int = None, response=None):
        super().__init__(message)
        self.code = code
        self.response = response


class AGIConnectionClosed(AGIException):
    """Exception raised when the peer closed the connection or hung up."""
    pass


class MissingArgumentException(AGIException):
    """Exception raised when an AGI request lacks a positional argument."""

    def __init__(self, index: int, required_count: int):
        super().__init__(
            f"Missing AGI argument at index {index}, {required_count} arguments required"
        )
        self.index = index
        self.required_count = required_count


class AuthenticationException(CallForwardServiceException):
    """Base exception for challenge authentication failures."""
    pass


class AuthenticationFailedException(AuthenticationException):
    """Exception raised when the returned digest does not match."""

    def __init__(self, expected: str, received: str):
        super().__init__("The returned digest is false")
        self.expected = expected
        self.received = received


class MalformedDigestException(AuthenticationException):
    """Exception raised when the returned digest is not decodable."""

    def __init__(self, received: str):
        super().__init__("The returned digest was not decodable as a SHA1 digest")
        self.received = received
