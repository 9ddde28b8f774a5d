"""
Platform Integration - Credential Vault.

============================================================
PURPOSE
============================================================
Storage for per-user, per-venue secrets behind opaque
handles. Connection rows only ever hold a handle.

The vault is called by the connection manager only.
Connectors never see it.

IMPLEMENTATIONS:
- InMemoryCredentialVault: Process-local, for tests/dev
- EncryptedCredentialVault: Fernet ciphertext stored in the
  platform_credentials table

============================================================
"""

import asyncio
import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import Dict, Tuple

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.ext.asyncio import async_sessionmaker

from .database import transaction_scope
from .errors import CredentialVaultError, PersistenceError
from .models import PlatformCredentialModel
from .types import PlatformCredentials


logger = logging.getLogger(__name__)


def _new_handle() -> str:
    return f"cred_{secrets.token_hex(16)}"


class CredentialVault(ABC):
    """Abstract secret store returning opaque handles."""

    @abstractmethod
    async def store(self, user_id: int, platform_id: int, secret: PlatformCredentials) -> str:
        """
        Store a secret.

        Returns:
            Opaque handle
        """

    @abstractmethod
    async def resolve(self, handle: str) -> PlatformCredentials:
        """
        Resolve a handle back to its secret.

        Raises:
            CredentialVaultError: Unknown or unreadable handle
        """

    @abstractmethod
    async def revoke(self, handle: str) -> None:
        """Forget a secret. Unknown handles are ignored."""


# ============================================================
# IN-MEMORY VAULT
# ============================================================

class InMemoryCredentialVault(CredentialVault):
    """Keeps secrets in process memory. Not durable."""

    def __init__(self):
        self._secrets: Dict[str, Tuple[int, int, PlatformCredentials]] = {}
        self._lock = asyncio.Lock()

    async def store(self, user_id: int, platform_id: int, secret: PlatformCredentials) -> str:
        handle = _new_handle()
        async with self._lock:
            self._secrets[handle] = (user_id, platform_id, secret)
        return handle

    async def resolve(self, handle: str) -> PlatformCredentials:
        entry = self._secrets.get(handle)
        if entry is None:
            raise CredentialVaultError(f"Unknown credential handle: {handle}")
        return entry[2]

    async def revoke(self, handle: str) -> None:
        async with self._lock:
            self._secrets.pop(handle, None)

    def __len__(self) -> int:
        return len(self._secrets)


# ============================================================
# ENCRYPTED VAULT
# ============================================================

class EncryptedCredentialVault(CredentialVault):
    """
    Fernet-encrypted secrets persisted in platform_credentials.

    Usage:
        vault = EncryptedCredentialVault(session_factory, key)
        handle = await vault.store(user_id, platform_id, creds)
    """

    def __init__(self, session_factory: async_sessionmaker, key: str):
        if not key:
            raise CredentialVaultError("CREDENTIAL_VAULT_KEY is not configured")
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise CredentialVaultError(f"Invalid vault key: {e}") from e
        self._session_factory = session_factory

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode()

    async def store(self, user_id: int, platform_id: int, secret: PlatformCredentials) -> str:
        handle = _new_handle()
        ciphertext = self._fernet.encrypt(json.dumps(secret.to_dict()).encode()).decode()
        try:
            async with transaction_scope(self._session_factory) as session:
                session.add(
                    PlatformCredentialModel(
                        handle=handle,
                        user_id=user_id,
                        platform_id=platform_id,
                        ciphertext=ciphertext,
                    )
                )
        except PersistenceError as e:
            raise CredentialVaultError(f"Failed to store credentials: {e.original_error}") from e
        logger.debug(f"Stored credentials for user {user_id} on platform {platform_id}")
        return handle

    async def resolve(self, handle: str) -> PlatformCredentials:
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(PlatformCredentialModel, handle)
            if row is None:
                raise CredentialVaultError(f"Unknown credential handle: {handle}")
            ciphertext = row.ciphertext
        try:
            payload = json.loads(self._fernet.decrypt(ciphertext.encode()))
        except InvalidToken as e:
            raise CredentialVaultError("Credential ciphertext could not be decrypted") from e
        return PlatformCredentials.from_dict(payload)

    async def revoke(self, handle: str) -> None:
        async with transaction_scope(self._session_factory) as session:
            row = await session.get(PlatformCredentialModel, handle)
            if row is not None:
                await session.delete(row)
