"""
Credential Vault
Envelope encryption (AES-256-GCM) for third-party tokens.
Data keys come from a key-management service; the application only ever
holds a data key for the duration of one seal / unseal call.
"""
import asyncio
import base64
import binascii
import os
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from loguru import logger

from bandhan_auth.errors import DecryptionFailed, EncryptionFailed, ProviderUnavailable

NONCE_BYTES = 12
TAG_BYTES = 16
DATA_KEY_BYTES = 32


@dataclass(frozen=True)
class SealedSecret:
    """The three persisted components, base64 encoded"""
    ciphertext: str
    iv: str
    auth_tag: str


class KeyProvider(ABC):
    """Source of data keys. Implementations talk to a KMS."""

    @abstractmethod
    def generate_data_key(self) -> Tuple[bytes, bytes]:
        """Return (plaintext data key, wrapped data key)"""

    @abstractmethod
    def unwrap_data_key(self, wrapped_key: bytes) -> bytes:
        """Return the plaintext data key for a wrapped one"""


class AwsKmsKeyProvider(KeyProvider):
    """AWS KMS data keys; the master key never leaves KMS"""

    def __init__(self, key_id: str, region: str, timeout: float):
        if not key_id:
            raise ValueError("AWS_KMS_KEY_ID must be set for the AWS key provider")
        self.key_id = key_id
        self.client = boto3.client(
            "kms",
            region_name=region,
            config=Config(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 0},
            ),
        )

    def generate_data_key(self) -> Tuple[bytes, bytes]:
        response = self.client.generate_data_key(KeyId=self.key_id, KeySpec="AES_256")
        return response["Plaintext"], response["CiphertextBlob"]

    def unwrap_data_key(self, wrapped_key: bytes) -> bytes:
        try:
            response = self.client.decrypt(CiphertextBlob=wrapped_key, KeyId=self.key_id)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "InvalidCiphertextException":
                raise DecryptionFailed()
            raise
        return response["Plaintext"]


class LocalKeyProvider(KeyProvider):
    """
    Wraps data keys with a locally held master key.
    For development and tests only; refused when ENVIRONMENT=production.
    """

    WRAP_AAD = b"bandhan-local-kms"

    def __init__(self, master_key: bytes):
        if len(master_key) != DATA_KEY_BYTES:
            raise ValueError("Local master key must be 32 bytes")
        self._master = AESGCM(master_key)

    def generate_data_key(self) -> Tuple[bytes, bytes]:
        data_key = AESGCM.generate_key(bit_length=256)
        nonce = os.urandom(NONCE_BYTES)
        return data_key, nonce + self._master.encrypt(nonce, data_key, self.WRAP_AAD)

    def unwrap_data_key(self, wrapped_key: bytes) -> bytes:
        nonce, body = wrapped_key[:NONCE_BYTES], wrapped_key[NONCE_BYTES:]
        try:
            return self._master.decrypt(nonce, body, self.WRAP_AAD)
        except InvalidTag:
            raise DecryptionFailed()


def build_key_provider(settings) -> KeyProvider:
    """Pick the key provider configured for this environment"""
    if settings.KMS_PROVIDER == "aws":
        return AwsKmsKeyProvider(
            settings.AWS_KMS_KEY_ID,
            settings.AWS_REGION,
            settings.EXTERNAL_CALL_TIMEOUT_SECONDS,
        )
    if settings.KMS_PROVIDER == "local":
        if settings.ENVIRONMENT == "production":
            raise ValueError("The local key provider cannot be used in production")
        if not settings.LOCAL_KMS_MASTER_KEY:
            raise ValueError("LOCAL_KMS_MASTER_KEY must be set for the local key provider")
        logger.warning("Credential vault is using the LOCAL key provider (development only)")
        return LocalKeyProvider(base64.b64decode(settings.LOCAL_KMS_MASTER_KEY))
    raise ValueError(f"Unknown KMS_PROVIDER: {settings.KMS_PROVIDER}")


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _unb64(data: str) -> bytes:
    return base64.b64decode(data.encode(), validate=True)


class CredentialVault:
    """
    seal() / unseal() for short secrets.

    The ciphertext component is an envelope: 2-byte length, wrapped data key,
    AES-GCM ciphertext. The nonce and tag are stored separately.
    """

    def __init__(self, key_provider: KeyProvider, timeout: float = 10.0):
        self.key_provider = key_provider
        self.timeout = timeout

    async def _call_kms(self, func, *args):
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("Key management call timed out")
            raise ProviderUnavailable()
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Key management call failed: {type(e).__name__}")
            raise ProviderUnavailable()

    async def seal(self, plaintext: str, context: Optional[str] = None) -> SealedSecret:
        """Encrypt plaintext; context is bound as AEAD associated data"""
        data_key, wrapped_key = await self._call_kms(self.key_provider.generate_data_key)
        if len(wrapped_key) > 0xFFFF:
            raise EncryptionFailed()

        iv = os.urandom(NONCE_BYTES)
        aad = context.encode() if context else None
        sealed = AESGCM(data_key).encrypt(iv, plaintext.encode(), aad)
        body, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]

        envelope = struct.pack(">H", len(wrapped_key)) + wrapped_key + body
        return SealedSecret(ciphertext=_b64(envelope), iv=_b64(iv), auth_tag=_b64(tag))

    async def unseal(self, secret: SealedSecret, context: Optional[str] = None) -> str:
        """Authenticated decrypt; any tampering raises DecryptionFailed"""
        try:
            envelope = _unb64(secret.ciphertext)
            iv = _unb64(secret.iv)
            tag = _unb64(secret.auth_tag)
            (key_length,) = struct.unpack(">H", envelope[:2])
            wrapped_key = envelope[2:2 + key_length]
            body = envelope[2 + key_length:]
        except (binascii.Error, struct.error, ValueError):
            raise DecryptionFailed()

        if len(wrapped_key) != key_length or len(iv) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise DecryptionFailed()

        data_key = await self._call_kms(self.key_provider.unwrap_data_key, wrapped_key)
        aad = context.encode() if context else None
        try:
            plaintext = AESGCM(data_key).decrypt(iv, body + tag, aad)
        except (InvalidTag, ValueError):
            raise DecryptionFailed()
        return plaintext.decode()
