# gigmatch/errors.py — error taxonomy of the match/chat core
# Nothing raised by a store driver crosses the core boundary unwrapped.


class CoreError(Exception):
    """Base for every error surfaced to UI-facing callers."""


class StoreError(CoreError):
    """The store could not complete an operation (after retries)."""


class TransientStoreError(StoreError):
    """Network, timeout or lock condition; safe to retry."""


class FavoriteWriteError(StoreError):
    """Recording or clearing a favorite failed. The resolver must not advance."""


class MatchCreationError(StoreError):
    """Reciprocity was confirmed but the match record could not be written.

    Retrying is safe: the record is keyed by the canonical match id.
    """

    def __init__(self, message: str, match_id: str):
        super().__init__(message)
        self.match_id = match_id


class AuthorizationError(CoreError):
    """Acting on state the caller does not own. Never retried."""


class NotParticipantError(AuthorizationError):
    def __init__(self, match_id: str, user_id: str):
        super().__init__(f"user {user_id!r} is not a participant of match {match_id!r}")
        self.match_id = match_id
        self.user_id = user_id


class NotFoundError(CoreError):
    pass


class ValidationError(CoreError, ValueError):
    """Malformed document or input."""
