"""
Error taxonomy for session bootstrap.

    SessionBootstrapError
    ├── ProviderError            identity provider transport / rejection
    │   └── AuthenticationError  login / register / OAuth initiation refused
    ├── ProfileStoreError        profile store read or write failed
    │   └── ProfileLookupError   transient lookup failure, retried by the poller
    ├── StorageError             durable scope write failed
    ├── InvalidIntentError       malformed pending intent on write
    └── JoinEventError           deferred join action failed after resolution
"""


class SessionBootstrapError(Exception):
    """Base class for every error raised by this package."""
    pass


class ProviderError(SessionBootstrapError):
    """The identity provider failed or rejected a call."""

    def __init__(self, message: str, *, transient: bool = True, code: str | None = None):
        super().__init__(message)
        self.transient = transient
        self.code = code


class AuthenticationError(ProviderError):
    """Credentials or sign-up data were refused by the provider."""

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message, transient=False, code=code)


class ProfileStoreError(SessionBootstrapError):
    pass


class ProfileLookupError(ProfileStoreError):
    pass


class StorageError(SessionBootstrapError):
    """A durable scope write did not land."""
    pass


class InvalidIntentError(SessionBootstrapError, ValueError):
    pass


class JoinEventError(SessionBootstrapError):
    pass
