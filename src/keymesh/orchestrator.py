"""
Key distribution orchestrator -- the sync protocol.

One run brings the directory up to date with everything this client is
able to grant:

    Start
      -> DeviceSync       user private key sealed for every registered device
      -> OrgEnumeration   pick a default organization if none is selected
      -> per organization:
           OrgBootstrap     first member generates the organization keypair
           OrgVerify        decrypt our copy and prove it round-trips
           TeamDistribution seal the organization key for members lacking it
      -> Finalize         persist selection, return SyncSummary

Any error aborts the run. Pushes already made stay valid: each one is an
independent, idempotent grant. The directory is the source of truth and
every mutating call hands back the refreshed record, which replaces
whatever was held before.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

from .audit import audit_event
from .crypto import CryptoCapability
from .directory import DirectoryClient, HttpDirectoryClient
from .errors import (
    DecryptionFailed,
    DirectoryError,
    KeyMeshError,
    MissingDevice,
    MissingOrganization,
    MissingOrganizationPrivateKey,
    NotAuthenticated,
)
from .identity import LocalIdentity
from .models import EncryptedKeyGrant, OrganizationRecord, SyncStats, SyncSummary, UserRecord

logger = logging.getLogger("keymesh.orchestrator")

VERIFICATION_CONSTANT = "true"


class SyncPhase(str, Enum):
    """Where a run is in the protocol."""

    START = "start"
    DEVICE_SYNC = "device_sync"
    ORG_ENUMERATION = "org_enumeration"
    ORG_BOOTSTRAP = "org_bootstrap"
    ORG_VERIFY = "org_verify"
    TEAM_DISTRIBUTION = "team_distribution"
    FINALIZE = "finalize"
    DONE = "done"
    FAILED = "failed"


class KeyDistributionOrchestrator:
    """Drives one end-to-end key distribution run.

    Args:
        directory: Remote directory client.
        identity: Local session and device key storage.
        crypto: Crypto capability (defaults to secp256k1 ECIES).
        audit_home: Directory for the audit log; None disables auditing.

    After a run, ``phase`` and ``error`` tell where it stopped and
    ``stats`` counts the grants it pushed.
    """

    def __init__(
        self,
        directory: DirectoryClient,
        identity: LocalIdentity,
        crypto: Optional[CryptoCapability] = None,
        audit_home: Optional[Path] = None,
    ) -> None:
        self.directory = directory
        self.identity = identity
        self.crypto = crypto or CryptoCapability()
        self.audit_home = audit_home
        self.phase = SyncPhase.START
        self.error: Optional[KeyMeshError] = None
        self.stats = SyncStats()

    @classmethod
    def from_home(cls, home: Path) -> "KeyDistributionOrchestrator":
        """Build an orchestrator from the session and config stored in ``home``.

        Raises:
            NotAuthenticated: If there is no session.
        """
        from .config import load_config

        config = load_config(home)
        crypto = CryptoCapability()
        identity = LocalIdentity(home, crypto)
        session = identity.session()
        if session is None:
            raise NotAuthenticated()

        directory = HttpDirectoryClient(
            session.hostname or config.hostname,
            session.token,
            timeout=config.timeout_seconds,
        )
        return cls(directory, identity, crypto, audit_home=home if config.audit else None)

    # -------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------

    def run(self) -> SyncSummary:
        """Run the full protocol.

        Returns:
            SyncSummary describing the run.

        Raises:
            KeyMeshError: On the first unrecoverable condition.
        """
        self.phase = SyncPhase.START
        self.error = None
        self.stats = SyncStats()
        try:
            summary = self._run()
        except KeyMeshError as exc:
            logger.info("Sync failed during %s: %s", self.phase.value, exc)
            self.phase = SyncPhase.FAILED
            self.error = exc
            raise
        self.phase = SyncPhase.DONE
        return summary

    def _run(self) -> SyncSummary:
        token = self.identity.current_token()
        user = self.directory.fetch_user(token)

        user_private_key = self.identity.user_private_key()
        if not user_private_key:
            raise NotAuthenticated(
                f"no private key for '{user.username}' on this device",
                hint="Run [keymesh login --private-key-file ...] on this device.",
                username=user.username,
            )
        user_public_key = self.crypto.public_key_for(user_private_key)
        if user.public_key and user.public_key != user_public_key:
            raise DecryptionFailed(
                f"local private key does not match the public key published for '{user.username}'",
                username=user.username,
            )

        if not user.organization_ids:
            raise MissingOrganization(username=user.username)

        summary = SyncSummary(username=user.username)

        self.phase = SyncPhase.DEVICE_SYNC
        user = self._sync_devices(user, user_private_key)

        self.phase = SyncPhase.ORG_ENUMERATION
        selected = self.identity.current_organization_selection()
        if not selected:
            selected = user.organization_ids[0]
            logger.info("No organization selected, defaulting to %s", selected)

        for organization_id in list(user.organization_ids):
            user = self._sync_organization(
                organization_id, user, user_private_key, user_public_key, summary,
            )

        self.phase = SyncPhase.FINALIZE
        self.identity.select_organization(selected)
        summary.selected_organization_id = selected
        summary.emergency_kit_generated_at = user.emergency_kit_generated_at

        self._audit(
            "SYNC",
            f"Synced {len(summary.organization_slugs)} organization(s) for '{summary.username}'",
            metadata={
                "organizations": summary.organization_slugs,
                "device_grants": self.stats.device_grants,
                "team_grants": self.stats.team_grants,
            },
        )
        return summary

    # -------------------------------------------------------------------
    # Phases
    # -------------------------------------------------------------------

    def _sync_devices(
        self,
        user: UserRecord,
        user_private_key: str,
    ) -> UserRecord:
        """Register this device and seal the user key for every device lacking it."""
        device_public_key = self.identity.ensure_device()
        if user.device(device_public_key) is None:
            grant = EncryptedKeyGrant.seal(self.crypto, user_private_key, device_public_key)
            user = self.directory.register_device(device_public_key, grant)
            logger.info("Registered this device for '%s'", user.username)
            self._audit("DEVICE_REGISTER", f"Registered device for '{user.username}'")

        if not user.device_ids:
            raise MissingDevice(username=user.username)

        for device_id in user.devices_missing_user_key:
            public_key = self.directory.fetch_device_public_key(device_id)
            grant = self._seal(user_private_key, public_key, f"device {device_id}")
            user = self.directory.push_device_key_grant(device_id, grant)
            self.stats.device_grants += 1
            logger.info("Granted user key to device %s", device_id)
            self._audit(
                "DEVICE_GRANT",
                f"Sealed user key for device {device_id}",
                metadata={"device_id": device_id},
            )

        return user

    def _sync_organization(
        self,
        organization_id: str,
        user: UserRecord,
        user_private_key: str,
        user_public_key: str,
        summary: SyncSummary,
    ) -> UserRecord:
        """Bootstrap, verify and distribute one organization's key."""
        self.phase = SyncPhase.ORG_BOOTSTRAP
        organization = self.directory.fetch_organization(organization_id)

        if not organization.has_public_key:
            organization, user = self._bootstrap(organization, user, user_public_key)
            self.stats.bootstrapped.append(organization.slug)

        if not organization.has_private_key_grant:
            raise MissingOrganizationPrivateKey(slug=organization.slug, username=user.username)

        self.phase = SyncPhase.ORG_VERIFY
        organization_private_key = self._verify(organization, user_private_key)

        self.phase = SyncPhase.TEAM_DISTRIBUTION
        pending: list[str] = []
        for member in organization.members_missing_org_key:
            if not member.public_key:
                logger.warning(
                    "[@%s] teammate '%s' has no public key yet; they need to run a sync",
                    organization.slug, member.username or member.id,
                )
                pending.append(member.username or member.id)
                continue

            grant = self._seal(
                organization_private_key,
                member.public_key,
                f"'{member.username or member.id}' in @{organization.slug}",
            )
            organization = self.directory.push_org_key_grant(organization.id, member.id, grant)
            self.stats.team_grants += 1
            logger.info("[@%s] granted organization key to %s", organization.slug, member.username or member.id)
            self._audit(
                "TEAM_GRANT",
                f"Sealed organization key of @{organization.slug} for '{member.username or member.id}'",
                metadata={"organization_id": organization.id, "member_id": member.id},
            )

        organization = self.directory.fetch_organization(organization_id)
        summary.organization_slugs.append(organization.slug)
        if pending:
            summary.pending_members[organization.slug] = pending
        return user

    def _bootstrap(
        self,
        organization: OrganizationRecord,
        user: UserRecord,
        user_public_key: str,
    ) -> tuple[OrganizationRecord, UserRecord]:
        """Become the originator of an organization's keypair."""
        public_key, private_key = self.crypto.generate_keypair()
        grant = EncryptedKeyGrant.seal(self.crypto, private_key, user_public_key)
        organization = self.directory.push_organization_bootstrap(organization.id, public_key, grant)
        logger.info("[@%s] generated organization keypair", organization.slug)
        self._audit(
            "ORG_BOOTSTRAP",
            f"Originated keypair for @{organization.slug}",
            metadata={"organization_id": organization.id},
        )

        if user.public_key != user_public_key:
            user = self.directory.push_user_public_key(user_public_key)
            logger.info("Published public key for '%s'", user.username)
            self._audit("USER_PUBLIC_KEY", f"Published public key for '{user.username}'")

        return organization, user

    def _verify(self, organization: OrganizationRecord, user_private_key: str) -> str:
        """Decrypt the organization key and prove it pairs with the public key.

        Returns:
            The organization private key (hex), held in memory only.

        Raises:
            DecryptionFailed: If decryption or the round trip fails.
        """
        try:
            organization_private_key = self.crypto.decrypt(
                organization.private_key_encrypted, user_private_key,
            )
            probe = self.crypto.encrypt(VERIFICATION_CONSTANT, organization.public_key)
            round_trip = self.crypto.decrypt(probe, organization_private_key)
        except (DecryptionFailed, ValueError) as exc:
            raise DecryptionFailed(slug=organization.slug) from exc

        if round_trip != VERIFICATION_CONSTANT:
            raise DecryptionFailed(slug=organization.slug)
        return organization_private_key

    def _seal(self, private_key: str, recipient_public_key: str, recipient: str) -> EncryptedKeyGrant:
        """Seal key material for a public key published by the directory.

        Raises:
            DirectoryError: If the directory handed out a malformed public key.
        """
        try:
            return EncryptedKeyGrant.seal(self.crypto, private_key, recipient_public_key)
        except ValueError as exc:
            raise DirectoryError(
                f"directory returned a malformed public key for {recipient}",
                hint="The recipient has to publish a valid key before they can be granted access.",
            ) from exc

    def _audit(self, event_type: str, detail: str, metadata: Optional[dict] = None) -> None:
        if self.audit_home is None:
            return
        audit_event(self.audit_home, event_type, detail, metadata=metadata)
