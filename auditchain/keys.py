"""
Key management module for auditchain.

Provides the server's long-term Ed25519 signing key to the registration
pipeline, with support for file-based keys and AWS KMS.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from typing import Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from .util import b64url_decode, b64url_encode

ED25519_PUBLIC_KEY_BYTES = 32


class KeyProvider(ABC):
    """Abstract interface for server signing key access."""

    @abstractmethod
    def sign(self, payload: bytes) -> bytes:
        """
        Produce a detached Ed25519 signature.

        Args:
            payload: The exact bytes to sign

        Returns:
            The raw 64-byte signature
        """
        pass

    @abstractmethod
    def public_key(self) -> str:
        """Base64url-encoded verify key matching ``sign``."""
        pass

    @abstractmethod
    def get_kid(self) -> str:
        """Get the key ID used for signing."""
        pass

    def sign_b64url(self, payload: bytes) -> str:
        return b64url_encode(self.sign(payload))


class LocalKeyProvider(KeyProvider):
    """Key provider holding an Ed25519 signing key in process memory."""

    def __init__(self, signing_key: SigningKey, kid: str = "server-01"):
        self._sk = signing_key
        self._kid = kid
        self._public = b64url_encode(bytes(signing_key.verify_key))

    def sign(self, payload: bytes) -> bytes:
        return self._sk.sign(payload).signature

    def public_key(self) -> str:
        return self._public

    def get_kid(self) -> str:
        return self._kid


class FileKeyProvider(LocalKeyProvider):
    """
    File-based key provider using an Ed25519 key stored in a JSON file
    of the form ``{"kid": ..., "private_key": <base64url seed>}``.
    """

    def __init__(self, signing_key_path: str):
        self._signing_key_path = signing_key_path

        # Load signing key once at initialization
        with open(signing_key_path, "r", encoding="utf-8") as f:
            raw = json.load(f)

        super().__init__(SigningKey(b64url_decode(raw["private_key"])), kid=raw["kid"])


def write_key_file(path: str, kid: str = "server-01") -> str:
    """
    Generate a new signing key and write it to ``path``.

    Returns:
        The base64url public key of the new key
    """
    sk = SigningKey.generate()
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"kid": kid, "private_key": b64url_encode(bytes(sk))}, f, indent=2)
    os.chmod(path, 0o600)
    return b64url_encode(bytes(sk.verify_key))


class AwsKmsEd25519Provider(KeyProvider):
    """
    AWS KMS signing provider using Ed25519 keys.

    Requires a SIGN_VERIFY KMS key with ED25519 support.
    Uses KMS Sign API with SigningAlgorithm ED25519_SHA_512 and MessageType RAW.

    Docs: https://docs.aws.amazon.com/kms/latest/APIReference/API_Sign.html
    """

    def __init__(
        self,
        kms_key_id: str,
        region: Optional[str] = None,
        kid: Optional[str] = None,
        public_key: Optional[str] = None,
        client=None
    ):
        self._kms_key_id = kms_key_id
        self._region = region
        self._kid = kid or "aws-kms-ed25519"
        self._public = public_key or None
        self._client = client
        self._lock = threading.RLock()

    def _get_client(self):
        """Lazy-load boto3 client."""
        if self._client is None:
            import boto3
            self._client = boto3.client("kms", region_name=self._region or None)
        return self._client

    def sign(self, payload: bytes) -> bytes:
        resp = self._get_client().sign(
            KeyId=self._kms_key_id,
            Message=payload,
            MessageType="RAW",
            SigningAlgorithm="ED25519_SHA_512"
        )
        return resp["Signature"]

    def public_key(self) -> str:
        """
        Configured public key, or the key fetched from KMS.

        KMS returns a DER SubjectPublicKeyInfo; for Ed25519 the raw key
        is its trailing 32 bytes.
        """
        with self._lock:
            if self._public is None:
                resp = self._get_client().get_public_key(KeyId=self._kms_key_id)
                der = resp["PublicKey"]
                self._public = b64url_encode(der[-ED25519_PUBLIC_KEY_BYTES:])
            return self._public

    def get_kid(self) -> str:
        return self._kid


def load_verify_key(public_key_b64url: str) -> VerifyKey:
    """
    Decode a base64url Ed25519 public key.

    Raises:
        ValueError: if the text is not base64url or not a 32-byte key
    """
    raw = b64url_decode(public_key_b64url)
    if len(raw) != ED25519_PUBLIC_KEY_BYTES:
        raise ValueError(
            f"Ed25519 public key must be {ED25519_PUBLIC_KEY_BYTES} bytes, got {len(raw)}"
        )
    return VerifyKey(raw)


def verify_ed25519(signature_b64url: str, payload: bytes, public_key_b64url: str) -> bool:
    """
    Verify an Ed25519 detached signature.

    Args:
        signature_b64url: Base64url-encoded signature
        payload: The signed data
        public_key_b64url: Base64url-encoded public key

    Returns:
        True if signature is valid, False otherwise
    """
    try:
        vk = load_verify_key(public_key_b64url)
        vk.verify(payload, b64url_decode(signature_b64url))
        return True
    except (BadSignatureError, ValueError, TypeError):
        return False


def get_key_provider(
    signer_type: str = "file",
    signing_key_path: str = "secrets/server_signing_key.json",
    kms_key_id: Optional[str] = None,
    kms_region: Optional[str] = None,
    kms_public_key: Optional[str] = None
) -> KeyProvider:
    """
    Factory function to create the appropriate key provider.

    Args:
        signer_type: "file" or "aws_kms"
        signing_key_path: Path to signing key JSON (for file provider)
        kms_key_id: AWS KMS key ID (for KMS provider)
        kms_region: AWS region (for KMS provider)
        kms_public_key: Base64url public key of the KMS key (optional)

    Returns:
        Configured KeyProvider instance
    """
    if signer_type == "aws_kms":
        if not kms_key_id:
            raise ValueError("AWS_KMS_KEY_ID required for aws_kms signer")
        return AwsKmsEd25519Provider(
            kms_key_id=kms_key_id,
            region=kms_region,
            public_key=kms_public_key
        )

    return FileKeyProvider(signing_key_path=signing_key_path)
