"""
KeyMesh error taxonomy.

Every failure the sync protocol can hit is a ``KeyMeshError``. Each
carries a human hint telling the caller what to do next, so the CLI can
print it without knowing which phase failed.
"""

from __future__ import annotations

from typing import Optional


class KeyMeshError(Exception):
    """Base class for every error raised by keymesh."""

    default_message = "keymesh error"
    default_hint = ""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        hint: Optional[str] = None,
        username: Optional[str] = None,
        slug: Optional[str] = None,
    ) -> None:
        self.username = username
        self.slug = slug
        self.message = message or self._format_default()
        self.hint = hint if hint is not None else self.default_hint
        super().__init__(self.message)

    def _format_default(self) -> str:
        return self.default_message


class NotAuthenticated(KeyMeshError):
    """No valid session (missing token, rejected token, or no local key)."""

    default_message = "not logged in"
    default_hint = "Run [keymesh login] to start a session."


class MissingDevice(KeyMeshError):
    """The directory reports no registered device for this user."""

    default_hint = "Register this device first with [keymesh device init] and run sync again."

    def _format_default(self) -> str:
        return f"user '{self.username or '?'}' has no registered device"


class MissingOrganization(KeyMeshError):
    """The user belongs to no organization."""

    default_hint = "Create or join an organization, then run sync again."

    def _format_default(self) -> str:
        return f"user '{self.username or '?'}' is not a member of any organization"


class MissingOrganizationPrivateKey(KeyMeshError):
    """The organization has a keypair but no grant for the current user."""

    default_hint = "Ask an existing member of the organization to run [keymesh sync]."

    def _format_default(self) -> str:
        return f"[@{self.slug or '?'}] no encrypted organization private key for you yet"


class DecryptionFailed(KeyMeshError):
    """Key material could not be decrypted or failed self-verification."""

    default_hint = "Key material is corrupted or mismatched. Do not proceed; contact an administrator."

    def _format_default(self) -> str:
        if self.slug:
            return f"[@{self.slug}] decryption failed"
        return "decryption failed"


class DirectoryError(KeyMeshError):
    """The directory could not be reached or rejected a request."""

    default_message = "directory request failed"
    default_hint = "Check your network connection and the configured hostname."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        **kwargs,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, **kwargs)
