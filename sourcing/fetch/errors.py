"""Error taxonomy for the profile fetch boundary.

Terminal errors are never retried; everything else is transient.
"""


class FetchError(Exception):
    """Base class for profile fetch failures."""

    terminal = False


class TerminalFetchError(FetchError):
    """A failure that retrying cannot fix."""

    terminal = True


class AuthenticationError(TerminalFetchError):
    """The provider rejected our credentials."""


class InvalidReferenceError(TerminalFetchError):
    """The profile reference is malformed or unsupported."""


class AccountSuspendedError(TerminalFetchError):
    """The upstream provider account is suspended."""


class TransientFetchError(FetchError):
    """Temporary unavailability, network error or a failed scrape job."""


class FetchTimeoutError(TransientFetchError):
    """The provider's scrape job did not become ready within the poll budget."""
