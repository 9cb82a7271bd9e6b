"""
Local identity -- what this machine knows about who you are.

Storage layout:
    <home>/
    ├── session.yaml          # hostname, token, username, selected organization
    └── device/
        ├── device.json       # this device's keypair (mode 0600)
        └── user.key.enc      # user private key sealed for the device public key

The device keypair is generated once and never leaves the machine. The
user private key is kept only as ciphertext addressed to the device key
and is decrypted into memory when a sync needs it.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from .crypto import CryptoCapability
from .errors import NotAuthenticated
from .models import Session

logger = logging.getLogger("keymesh.identity")

SESSION_FILE_NAME = "session.yaml"


class LocalIdentity:
    """Session and device key storage rooted at a KeyMesh home directory.

    Args:
        home: KeyMesh home directory (~/.keymesh).
        crypto: Crypto capability used to seal/unseal the user key.
    """

    def __init__(self, home: Path, crypto: Optional[CryptoCapability] = None) -> None:
        self._home = home
        self._crypto = crypto or CryptoCapability()
        self._session_file = home / SESSION_FILE_NAME
        self._device_dir = home / "device"
        self._device_file = self._device_dir / "device.json"
        self._user_key_file = self._device_dir / "user.key.enc"

    @property
    def home(self) -> Path:
        return self._home

    # -------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------

    def session(self) -> Optional[Session]:
        """Load the persisted session, or None if there is none."""
        if not self._session_file.exists():
            return None
        try:
            data = yaml.safe_load(self._session_file.read_text(encoding="utf-8")) or {}
            return Session.model_validate(data)
        except (yaml.YAMLError, ValidationError) as exc:
            logger.warning("Ignoring unreadable session file: %s", exc)
            return None

    def login(self, hostname: str, token: str, username: Optional[str] = None) -> Session:
        """Start a session, keeping the organization selection for the same host."""
        previous = self.session()
        organization_id = None
        if previous and previous.hostname == hostname:
            organization_id = previous.organization_id

        session = Session(
            hostname=hostname,
            token=token,
            username=username,
            organization_id=organization_id,
        )
        self._save_session(session)
        logger.info("Logged in to %s", hostname)
        return session

    def logout(self) -> bool:
        """Forget the session. Returns True if one existed."""
        if not self._session_file.exists():
            return False
        self._session_file.unlink()
        logger.info("Logged out")
        return True

    def current_token(self) -> str:
        """Return the session token.

        Raises:
            NotAuthenticated: If there is no session or its token is empty.
        """
        session = self.session()
        if session is None or not session.token:
            raise NotAuthenticated()
        return session.token

    def current_organization_selection(self) -> Optional[str]:
        session = self.session()
        return session.organization_id if session else None

    def select_organization(self, organization_id: str) -> None:
        """Persist the selected organization in the session.

        Raises:
            NotAuthenticated: If there is no session to store it in.
        """
        session = self.session()
        if session is None:
            raise NotAuthenticated()
        if session.organization_id == organization_id:
            return
        session.organization_id = organization_id
        self._save_session(session)
        logger.info("Selected organization %s", organization_id)

    def _save_session(self, session: Session) -> None:
        self._home.mkdir(parents=True, exist_ok=True)
        self._session_file.write_text(
            yaml.dump(session.model_dump(mode="json"), default_flow_style=False),
            encoding="utf-8",
        )
        os.chmod(self._session_file, 0o600)

    # -------------------------------------------------------------------
    # Device keypair
    # -------------------------------------------------------------------

    def has_device(self) -> bool:
        return self._device_file.exists()

    def ensure_device(self) -> str:
        """Create the device keypair on first use.

        Returns:
            The device public key (hex).
        """
        if self.has_device():
            return self.device_public_key()

        public_key, private_key = self._crypto.generate_keypair()
        self._device_dir.mkdir(parents=True, exist_ok=True)
        self._device_file.write_text(
            json.dumps({"public_key": public_key, "private_key": private_key}, indent=2),
            encoding="utf-8",
        )
        os.chmod(self._device_file, 0o600)
        logger.info("Generated device keypair")
        return public_key

    def device_public_key(self) -> str:
        return self._load_device()["public_key"]

    def device_private_key(self) -> str:
        return self._load_device()["private_key"]

    def _load_device(self) -> dict:
        if not self._device_file.exists():
            raise NotAuthenticated(
                "no device keypair on this machine",
                hint="Run [keymesh device init] or [keymesh login].",
            )
        return json.loads(self._device_file.read_text(encoding="utf-8"))

    # -------------------------------------------------------------------
    # User private key
    # -------------------------------------------------------------------

    def store_user_private_key(self, private_key_hex: str) -> str:
        """Seal the user private key for this device and store it.

        Returns:
            The user public key derived from the private key.
        """
        public_key = self._crypto.public_key_for(private_key_hex)
        device_public_key = self.ensure_device()
        self._user_key_file.write_text(
            self._crypto.encrypt(private_key_hex, device_public_key),
            encoding="utf-8",
        )
        os.chmod(self._user_key_file, 0o600)
        logger.info("Stored user private key for this device")
        return public_key

    def user_private_key(self) -> Optional[str]:
        """Decrypt the stored user private key into memory.

        Returns:
            The private key hex, or None if none is stored.

        Raises:
            DecryptionFailed: If the stored key does not open with the device key.
        """
        if not self._user_key_file.exists() or not self.has_device():
            return None
        ciphertext = self._user_key_file.read_text(encoding="utf-8").strip()
        return self._crypto.decrypt(ciphertext, self.device_private_key())
