"""
Directory clients -- the remote service holding public keys and grants.

The directory never sees a plaintext private key. It stores public keys,
encrypted grants, and who belongs where. Every mutating call returns the
freshly updated record (read-your-writes), so callers never keep working
from a copy that predates their own push.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import requests
from pydantic import ValidationError

from .errors import DirectoryError, NotAuthenticated
from .models import EncryptedKeyGrant, OrganizationRecord, UserRecord

logger = logging.getLogger("keymesh.directory")

API_PREFIX = "/api/sync"


class DirectoryClient(ABC):
    """Remote operations the key-distribution protocol relies on."""

    @abstractmethod
    def fetch_user(self, token: str) -> UserRecord:
        """Fetch the user owning ``token``."""

    @abstractmethod
    def register_device(self, public_key: str, grant: EncryptedKeyGrant) -> UserRecord:
        """Register this device's public key along with its user-key grant.

        Returns:
            The refreshed user record.
        """

    @abstractmethod
    def fetch_device_public_key(self, device_id: str) -> str:
        """Fetch the public key registered for a device."""

    @abstractmethod
    def push_device_key_grant(self, device_id: str, grant: EncryptedKeyGrant) -> UserRecord:
        """Store the user private key sealed for one device.

        Returns:
            The refreshed user record.
        """

    @abstractmethod
    def fetch_organization(self, organization_id: str) -> OrganizationRecord:
        """Fetch an organization as seen by the calling user."""

    @abstractmethod
    def push_organization_bootstrap(
        self,
        organization_id: str,
        public_key: str,
        grant: EncryptedKeyGrant,
    ) -> OrganizationRecord:
        """Publish an organization's first keypair.

        Args:
            organization_id: Organization being bootstrapped.
            public_key: Newly generated organization public key.
            grant: Organization private key sealed for the originator.

        Returns:
            The refreshed organization record.
        """

    @abstractmethod
    def push_user_public_key(self, public_key: str) -> UserRecord:
        """Publish the calling user's public key.

        Returns:
            The refreshed user record.
        """

    @abstractmethod
    def push_org_key_grant(
        self,
        organization_id: str,
        member_id: str,
        grant: EncryptedKeyGrant,
    ) -> OrganizationRecord:
        """Store the organization private key sealed for one member.

        Returns:
            The refreshed organization record.
        """


def _grant_payload(grant: EncryptedKeyGrant) -> dict[str, str]:
    return {
        "public_key": grant.recipient_public_key,
        "private_key_encrypted": grant.ciphertext,
        "algorithm_version": grant.algorithm_version,
    }


class HttpDirectoryClient(DirectoryClient):
    """JSON-over-HTTPS directory client.

    Args:
        hostname: Base URL of the directory, e.g. ``https://keymesh.example``.
        token: Session bearer token.
        timeout: Per-request timeout in seconds.
        http: Optional ``requests.Session`` to reuse connections.
    """

    def __init__(
        self,
        hostname: str,
        token: str,
        timeout: float = 30.0,
        http: Optional[requests.Session] = None,
    ) -> None:
        self.hostname = hostname.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._http = http or requests.Session()

    def fetch_user(self, token: str) -> UserRecord:
        self._token = token
        return self._parse(UserRecord, self._request("GET", "/me"))

    def register_device(self, public_key: str, grant: EncryptedKeyGrant) -> UserRecord:
        data = self._request(
            "POST",
            "/me/devices",
            {
                "public_key": public_key,
                "user_private_key_encrypted": grant.ciphertext,
                "algorithm_version": grant.algorithm_version,
            },
        )
        return self._parse(UserRecord, data)

    def fetch_device_public_key(self, device_id: str) -> str:
        data = self._request("GET", f"/devices/{device_id}")
        public_key = data.get("public_key") if isinstance(data, dict) else None
        if not public_key:
            raise DirectoryError(f"device {device_id} has no public key")
        return public_key

    def push_device_key_grant(self, device_id: str, grant: EncryptedKeyGrant) -> UserRecord:
        data = self._request(
            "POST",
            f"/me/devices/{device_id}/private_key_encrypted",
            _grant_payload(grant),
        )
        return self._parse(UserRecord, data)

    def fetch_organization(self, organization_id: str) -> OrganizationRecord:
        return self._parse(OrganizationRecord, self._request("GET", f"/organizations/{organization_id}"))

    def push_organization_bootstrap(
        self,
        organization_id: str,
        public_key: str,
        grant: EncryptedKeyGrant,
    ) -> OrganizationRecord:
        data = self._request(
            "POST",
            f"/organizations/{organization_id}/public_key",
            {
                "public_key": public_key,
                "private_key_encrypted": grant.ciphertext,
                "algorithm_version": grant.algorithm_version,
            },
        )
        return self._parse(OrganizationRecord, data)

    def push_user_public_key(self, public_key: str) -> UserRecord:
        return self._parse(UserRecord, self._request("POST", "/me/public_key", {"public_key": public_key}))

    def push_org_key_grant(
        self,
        organization_id: str,
        member_id: str,
        grant: EncryptedKeyGrant,
    ) -> OrganizationRecord:
        data = self._request(
            "POST",
            f"/organizations/{organization_id}/users/{member_id}/private_key_encrypted",
            _grant_payload(grant),
        )
        return self._parse(OrganizationRecord, data)

    # -------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------

    def _request(self, method: str, path: str, payload: Optional[dict] = None) -> Any:
        url = f"{self.hostname}{API_PREFIX}{path}"
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Content-Type": "application/json",
        }
        logger.debug("%s %s", method, url)

        try:
            resp = self._http.request(
                method, url, headers=headers, json=payload, timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise DirectoryError(f"{method} {path}: {exc}") from exc

        if resp.status_code in (401, 403):
            raise NotAuthenticated(f"directory rejected the session ({resp.status_code})")
        if resp.status_code >= 400:
            raise DirectoryError(
                f"{method} {path}: HTTP {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise DirectoryError(f"{method} {path}: invalid JSON response") from exc

    @staticmethod
    def _parse(model, data: Any):
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise DirectoryError(f"unexpected {model.__name__} payload: {exc}") from exc
