"""
Pydantic models for everything KeyMesh reads from or pushes to the directory.

The directory is the single source of truth. These records are snapshots of
what it last returned; the "missing" sets are derived views computed on
demand so they can never drift from the record they describe.

Private keys never appear as fields here. The only key material a record
carries is public keys and ciphertext.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from .crypto import CryptoCapability

GRANT_ALGORITHM = "secp256k1-ecies-v1"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


# ---------------------------------------------------------------------------
# Directory records
# ---------------------------------------------------------------------------


class DeviceRecord(BaseModel):
    """A device registered to a user."""

    id: str
    public_key: str = ""
    private_key_encrypted: str = Field(
        default="",
        description="User private key sealed for this device's public key",
    )

    @property
    def has_user_key(self) -> bool:
        return bool(self.private_key_encrypted)


class UserRecord(BaseModel):
    """The calling user as the directory sees them."""

    id: str
    username: str
    public_key: str = ""
    emergency_kit_generated_at: Optional[datetime] = None
    devices: list[DeviceRecord] = Field(default_factory=list)
    organization_ids: list[str] = Field(default_factory=list)

    @property
    def device_ids(self) -> list[str]:
        return [d.id for d in self.devices]

    @property
    def devices_missing_user_key(self) -> list[str]:
        """Ids of registered devices that can receive a grant but have none."""
        return [d.id for d in self.devices if d.public_key and not d.has_user_key]

    def device(self, public_key: str) -> Optional[DeviceRecord]:
        """Find the registered device with this public key."""
        return next((d for d in self.devices if d.public_key == public_key), None)


class MemberRecord(BaseModel):
    """A member of an organization."""

    id: str
    username: str = ""
    public_key: str = Field(default="", description="Empty until the member's first sync")
    has_org_key: bool = False


class OrganizationRecord(BaseModel):
    """An organization, scoped to what the calling user may see.

    ``private_key_encrypted`` is the organization private key sealed for
    the *calling user's* public key. It is empty until some member has
    granted the caller access.
    """

    id: str
    slug: str
    public_key: str = ""
    private_key_encrypted: str = ""
    members: list[MemberRecord] = Field(default_factory=list)

    @property
    def has_public_key(self) -> bool:
        return bool(self.public_key)

    @property
    def has_private_key_grant(self) -> bool:
        return bool(self.private_key_encrypted)

    @property
    def member_ids(self) -> list[str]:
        return [m.id for m in self.members]

    @property
    def members_missing_org_key(self) -> list[MemberRecord]:
        return [m for m in self.members if not m.has_org_key]


class EncryptedKeyGrant(BaseModel):
    """A private key sealed for exactly one recipient public key.

    Use :meth:`seal` to build one so the recipient key recorded in the
    grant is always the key the ciphertext was produced for.
    """

    model_config = ConfigDict(frozen=True)

    recipient_public_key: str
    ciphertext: str
    algorithm_version: str = GRANT_ALGORITHM

    @classmethod
    def seal(
        cls,
        crypto: "CryptoCapability",
        plaintext: Union[str, bytes],
        recipient_public_key: str,
    ) -> "EncryptedKeyGrant":
        """Encrypt ``plaintext`` for ``recipient_public_key``.

        Args:
            crypto: Crypto capability performing the encryption.
            plaintext: Private key material (hex string).
            recipient_public_key: Hex public key of the recipient.

        Returns:
            EncryptedKeyGrant addressed to the recipient.
        """
        return cls(
            recipient_public_key=recipient_public_key,
            ciphertext=crypto.encrypt(plaintext, recipient_public_key),
        )


# ---------------------------------------------------------------------------
# Results and local state
# ---------------------------------------------------------------------------


class SyncSummary(BaseModel):
    """What a sync run did, returned by the orchestrator."""

    username: str
    emergency_kit_generated_at: Optional[datetime] = None
    organization_slugs: list[str] = Field(default_factory=list)
    selected_organization_id: Optional[str] = None
    pending_members: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Per organization slug, members who have not published a public key yet",
    )


class SyncStats(BaseModel):
    """Pushes made by the last run. Zero on a run with nothing to do."""

    device_grants: int = 0
    team_grants: int = 0
    bootstrapped: list[str] = Field(default_factory=list)


class Session(BaseModel):
    """Persisted login session."""

    hostname: str
    token: str
    username: Optional[str] = None
    organization_id: Optional[str] = None


class KeyMeshConfig(BaseModel):
    """User configuration, loaded from config.yaml."""

    hostname: str = "https://keymesh.local"
    timeout_seconds: float = 30.0
    audit: bool = True
    log_level: str = "WARNING"

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise to an upper-case level name the logging module knows."""
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}: got '{v}'")
        return level
