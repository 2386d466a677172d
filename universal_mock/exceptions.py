class MockServiceError(Exception):
    """Base class for errors that stop the mock service from starting or running."""


class ConfigurationError(MockServiceError):
    pass


class FlagParseError(ConfigurationError):
    pass


class ListenerError(MockServiceError):
    pass


class InvalidRequestFormat(Exception):
    """The bytes on the wire are not a valid HTTP/1.x request."""


class RequestHeaderTooLarge(InvalidRequestFormat):
    pass
