"""Shared test fixtures for keymesh."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest

from keymesh.crypto import CryptoCapability
from keymesh.directory import DirectoryClient
from keymesh.errors import DirectoryError, NotAuthenticated
from keymesh.identity import LocalIdentity
from keymesh.models import (
    DeviceRecord,
    EncryptedKeyGrant,
    MemberRecord,
    OrganizationRecord,
    UserRecord,
)

TOKEN = "test-token"
HOSTNAME = "https://keymesh.test"


class FakeDirectory(DirectoryClient):
    """In-memory directory that records every push.

    Organizations are stored per id with their grants keyed by member id.
    The record returned to the caller is scoped to ``user_id``, the same
    way the real directory scopes ``private_key_encrypted``.
    """

    def __init__(
        self,
        user_id: str = "u-alice",
        username: str = "alice",
        public_key: str = "",
        token: str = TOKEN,
    ) -> None:
        self.user_id = user_id
        self.username = username
        self.public_key = public_key
        self.token = token
        self.emergency_kit_generated_at: Optional[datetime] = datetime(2026, 1, 2, tzinfo=timezone.utc)
        self.devices: dict[str, dict[str, str]] = {}
        self.organizations: dict[str, dict] = {}
        self.organization_order: list[str] = []
        self.pushes: list[tuple[str, dict]] = []
        self.calls: list[str] = []

    # -- setup helpers --------------------------------------------------

    def add_device(self, device_id: str, public_key: str, private_key_encrypted: str = "") -> None:
        self.devices[device_id] = {
            "public_key": public_key,
            "private_key_encrypted": private_key_encrypted,
        }

    def add_organization(self, organization_id: str, slug: str, public_key: str = "") -> None:
        self.organizations[organization_id] = {
            "slug": slug,
            "public_key": public_key,
            "grants": {},
            "members": {self.user_id: {"username": self.username}},
        }
        self.organization_order.append(organization_id)

    def add_member(self, organization_id: str, member_id: str, username: str, public_key: str = "") -> None:
        self.organizations[organization_id]["members"][member_id] = {
            "username": username,
            "public_key": public_key,
        }

    def grant(self, organization_id: str, member_id: str, ciphertext: str) -> None:
        self.organizations[organization_id]["grants"][member_id] = ciphertext

    def push_names(self) -> list[str]:
        return [name for name, _ in self.pushes]

    # -- records --------------------------------------------------------

    def _user(self) -> UserRecord:
        return UserRecord(
            id=self.user_id,
            username=self.username,
            public_key=self.public_key,
            emergency_kit_generated_at=self.emergency_kit_generated_at,
            devices=[DeviceRecord(id=device_id, **d) for device_id, d in self.devices.items()],
            organization_ids=list(self.organization_order),
        )

    def _organization(self, organization_id: str) -> OrganizationRecord:
        org = self.organizations[organization_id]
        members = []
        for member_id, m in org["members"].items():
            public_key = self.public_key if member_id == self.user_id else m.get("public_key", "")
            members.append(
                MemberRecord(
                    id=member_id,
                    username=m["username"],
                    public_key=public_key,
                    has_org_key=member_id in org["grants"],
                )
            )
        return OrganizationRecord(
            id=organization_id,
            slug=org["slug"],
            public_key=org["public_key"],
            private_key_encrypted=org["grants"].get(self.user_id, ""),
            members=members,
        )

    # -- DirectoryClient ------------------------------------------------

    def fetch_user(self, token: str) -> UserRecord:
        self.calls.append("fetch_user")
        if token != self.token:
            raise NotAuthenticated("directory rejected the session (401)")
        return self._user()

    def register_device(self, public_key: str, grant: EncryptedKeyGrant) -> UserRecord:
        self.pushes.append(("register_device", {"public_key": public_key, **grant.model_dump()}))
        device_id = f"dev-{len(self.devices) + 1}"
        self.add_device(device_id, public_key, grant.ciphertext)
        return self._user()

    def fetch_device_public_key(self, device_id: str) -> str:
        self.calls.append("fetch_device_public_key")
        if device_id not in self.devices:
            raise DirectoryError(f"device {device_id} not found", status_code=404)
        return self.devices[device_id]["public_key"]

    def push_device_key_grant(self, device_id: str, grant: EncryptedKeyGrant) -> UserRecord:
        self.pushes.append(("device_grant", {"device_id": device_id, **grant.model_dump()}))
        self.devices[device_id]["private_key_encrypted"] = grant.ciphertext
        return self._user()

    def fetch_organization(self, organization_id: str) -> OrganizationRecord:
        self.calls.append("fetch_organization")
        return self._organization(organization_id)

    def push_organization_bootstrap(
        self,
        organization_id: str,
        public_key: str,
        grant: EncryptedKeyGrant,
    ) -> OrganizationRecord:
        self.pushes.append(
            ("bootstrap", {"organization_id": organization_id, "public_key": public_key, **grant.model_dump()})
        )
        org = self.organizations[organization_id]
        org["public_key"] = public_key
        org["grants"][self.user_id] = grant.ciphertext
        return self._organization(organization_id)

    def push_user_public_key(self, public_key: str) -> UserRecord:
        self.pushes.append(("user_public_key", {"public_key": public_key}))
        self.public_key = public_key
        return self._user()

    def push_org_key_grant(
        self,
        organization_id: str,
        member_id: str,
        grant: EncryptedKeyGrant,
    ) -> OrganizationRecord:
        self.pushes.append(
            ("team_grant", {"organization_id": organization_id, "member_id": member_id, **grant.model_dump()})
        )
        self.grant(organization_id, member_id, grant.ciphertext)
        return self._organization(organization_id)


@pytest.fixture
def crypto() -> CryptoCapability:
    return CryptoCapability()


@pytest.fixture
def home(tmp_path: Path) -> Path:
    """Provide a temporary KeyMesh home directory."""
    keymesh_home = tmp_path / ".keymesh"
    keymesh_home.mkdir()
    return keymesh_home


@pytest.fixture
def user_keys(crypto: CryptoCapability) -> tuple[str, str]:
    """The test user's (public_key, private_key)."""
    return crypto.generate_keypair()


@pytest.fixture
def identity(home: Path, crypto: CryptoCapability, user_keys: tuple[str, str]) -> LocalIdentity:
    """A logged-in identity with a device keypair and the user key stored."""
    ident = LocalIdentity(home, crypto)
    ident.login(HOSTNAME, TOKEN, username="alice")
    ident.store_user_private_key(user_keys[1])
    return ident


@pytest.fixture
def directory(identity: LocalIdentity, crypto: CryptoCapability, user_keys: tuple[str, str]) -> FakeDirectory:
    """A directory where this device is already registered and granted."""
    fake = FakeDirectory()
    device_public_key = identity.device_public_key()
    fake.add_device("dev-this", device_public_key, crypto.encrypt(user_keys[1], device_public_key))
    return fake


@pytest.fixture
def make_directory():
    """The FakeDirectory class, for tests that build their own."""
    return FakeDirectory
