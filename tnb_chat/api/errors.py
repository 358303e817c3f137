# tnb_chat/api/errors.py


class StoreError(Exception):
    """A read, write or subscription against the remote store failed."""


class TransientStoreError(StoreError):
    """Store failure that the next snapshot delivery is expected to make irrelevant."""


class AuthenticationError(Exception):
    """Sign-in or sign-up rejected by the identity provider."""

    def __init__(self, message: str, status: int = 0):
        super().__init__(message)
        self.message = message
        self.status = status


class NotAuthorizedError(Exception):
    """An administrator-only operation was attempted by a regular account."""


class SnapshotSchemaError(ValueError):
    """A snapshot entry does not match its collection schema."""

    def __init__(self, key: str, detail: str):
        super().__init__(f"invalid entry '{key}': {detail}")
        self.key = key
        self.detail = detail
