"""
Error types raised by the Pub/Sub client facades and the CLI.
"""


class PubSubCliError(Exception):
    """Base class for all client errors"""
    pass


class NotFound(PubSubCliError):
    """Referenced topic or subscription does not exist"""
    pass


class AlreadyExists(PubSubCliError):
    """Topic or subscription with the requested ID already exists"""
    pass


class PayloadReadError(PubSubCliError, OSError):
    """Message payload file could not be read"""
    pass


class BrokerError(PubSubCliError):
    """Failure reported by the broker client (RPC, stream or credentials)"""
    pass


class CommandError(PubSubCliError):
    """A CLI command failed; the message carries the failed action"""

    def __init__(self, action: str, cause: Exception):
        super().__init__(f"{action}: {cause}")
        self.action = action
        self.cause = cause
