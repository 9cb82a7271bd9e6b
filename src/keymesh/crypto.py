"""
Asymmetric crypto capability -- secp256k1 ECIES on top of ``cryptography``.

Stateless wrapper exposing the three operations the sync protocol needs:
generate a keypair, encrypt for a public key, decrypt with a private key.

Scheme (per message):
    ephemeral keypair on secp256k1
    shared = ECDH(ephemeral_private, recipient_public)
    key    = HKDF-SHA256(ephemeral_public_uncompressed || shared, 32 bytes)
    AES-256-GCM with a random 16-byte nonce

Wire layout (hex encoded):
    ephemeral_public (65) || nonce (16) || tag (16) || ciphertext

Keys travel as hex: compressed SEC1 public keys (33 bytes) and raw
32-byte private scalars.
"""

from __future__ import annotations

import logging
import os
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .errors import DecryptionFailed

logger = logging.getLogger("keymesh.crypto")

CURVE = ec.SECP256K1()
EPHEMERAL_KEY_SIZE = 65
NONCE_SIZE = 16
TAG_SIZE = 16
PRIVATE_KEY_SIZE = 32


def _load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    raw = bytes.fromhex(private_key_hex)
    if len(raw) != PRIVATE_KEY_SIZE:
        raise ValueError(f"private key must be {PRIVATE_KEY_SIZE} bytes, got {len(raw)}")
    return ec.derive_private_key(int.from_bytes(raw, "big"), CURVE)


def _load_public_key(public_key_hex: str) -> ec.EllipticCurvePublicKey:
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, bytes.fromhex(public_key_hex))


def _private_hex(private_key: ec.EllipticCurvePrivateKey) -> str:
    return private_key.private_numbers().private_value.to_bytes(PRIVATE_KEY_SIZE, "big").hex()


def _public_bytes(public_key: ec.EllipticCurvePublicKey, compressed: bool = True) -> bytes:
    fmt = (
        serialization.PublicFormat.CompressedPoint
        if compressed
        else serialization.PublicFormat.UncompressedPoint
    )
    return public_key.public_bytes(serialization.Encoding.X962, fmt)


def _derive_key(ephemeral_public: bytes, shared_secret: bytes) -> bytes:
    """Derive the AES-256 key from the ECDH exchange using HKDF-SHA256."""
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=None,
    )
    return hkdf.derive(ephemeral_public + shared_secret)


class CryptoCapability:
    """Keypair generation and ECIES encryption for hex-encoded keys.

    Holds no state; one instance can be shared freely.
    """

    def generate_keypair(self) -> tuple[str, str]:
        """Generate a fresh secp256k1 keypair.

        Returns:
            Tuple of (public_key_hex, private_key_hex).
        """
        private_key = ec.generate_private_key(CURVE)
        return _public_bytes(private_key.public_key()).hex(), _private_hex(private_key)

    def public_key_for(self, private_key_hex: str) -> str:
        """Return the compressed public key paired with a private key.

        Raises:
            DecryptionFailed: If the private key is malformed.
        """
        try:
            private_key = _load_private_key(private_key_hex)
        except ValueError as exc:
            raise DecryptionFailed(f"invalid private key: {exc}") from exc
        return _public_bytes(private_key.public_key()).hex()

    def encrypt(self, plaintext: Union[str, bytes], recipient_public_key_hex: str) -> str:
        """Encrypt a value for the holder of a public key.

        Args:
            plaintext: Value to encrypt (str is UTF-8 encoded).
            recipient_public_key_hex: Recipient's public key, hex.

        Returns:
            Hex-encoded ciphertext.

        Raises:
            ValueError: If the recipient public key is malformed.
        """
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")

        recipient = _load_public_key(recipient_public_key_hex)
        ephemeral = ec.generate_private_key(CURVE)
        ephemeral_public = _public_bytes(ephemeral.public_key(), compressed=False)
        shared = ephemeral.exchange(ec.ECDH(), recipient)

        nonce = os.urandom(NONCE_SIZE)
        sealed = AESGCM(_derive_key(ephemeral_public, shared)).encrypt(nonce, plaintext, None)
        body, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return (ephemeral_public + nonce + tag + body).hex()

    def decrypt(self, ciphertext_hex: str, private_key_hex: str) -> str:
        """Decrypt a value with the recipient's private key.

        Args:
            ciphertext_hex: Output of :meth:`encrypt`.
            private_key_hex: Recipient's private key, hex.

        Returns:
            The plaintext, UTF-8 decoded.

        Raises:
            DecryptionFailed: On malformed input or a key mismatch.
        """
        try:
            data = bytes.fromhex(ciphertext_hex)
            header = EPHEMERAL_KEY_SIZE + NONCE_SIZE + TAG_SIZE
            if len(data) < header:
                raise ValueError("ciphertext too short")

            ephemeral_public = data[:EPHEMERAL_KEY_SIZE]
            nonce = data[EPHEMERAL_KEY_SIZE:EPHEMERAL_KEY_SIZE + NONCE_SIZE]
            tag = data[EPHEMERAL_KEY_SIZE + NONCE_SIZE:header]
            body = data[header:]

            private_key = _load_private_key(private_key_hex)
            peer = ec.EllipticCurvePublicKey.from_encoded_point(CURVE, ephemeral_public)
            shared = private_key.exchange(ec.ECDH(), peer)
            plaintext = AESGCM(_derive_key(ephemeral_public, shared)).decrypt(nonce, body + tag, None)
            return plaintext.decode("utf-8")
        except (ValueError, InvalidTag, UnicodeDecodeError) as exc:
            logger.debug("Decryption failed: %s", type(exc).__name__)
            raise DecryptionFailed() from exc
