"""
Credential Vault Tests.
"""

import pytest
import pytest_asyncio
from sqlalchemy import select

from platform_integration.database import transaction_scope
from platform_integration.errors import CredentialVaultError
from platform_integration.models import PlatformCredentialModel
from platform_integration.registry import PlatformRegistry
from platform_integration.types import PlatformCredentials
from platform_integration.vault import EncryptedCredentialVault, InMemoryCredentialVault


@pytest_asyncio.fixture
async def platform_id(database):
    registry = PlatformRegistry(database)
    await registry.ensure_seeded()
    return (await registry.list_platforms())[0].id


class TestInMemoryVault:

    @pytest.mark.asyncio
    async def test_store_resolve_revoke(self):
        vault = InMemoryCredentialVault()
        secret = PlatformCredentials(username="trader", password="hunter2")

        handle = await vault.store(1, 1, secret)

        assert handle.startswith("cred_")
        assert await vault.resolve(handle) == secret
        await vault.revoke(handle)
        assert len(vault) == 0
        with pytest.raises(CredentialVaultError):
            await vault.resolve(handle)

    @pytest.mark.asyncio
    async def test_handles_are_unique(self):
        vault = InMemoryCredentialVault()
        secret = PlatformCredentials(api_key="k", api_secret="s")

        assert await vault.store(1, 1, secret) != await vault.store(1, 1, secret)


class TestEncryptedVault:

    def test_requires_key(self, database):
        with pytest.raises(CredentialVaultError):
            EncryptedCredentialVault(database, "")

    def test_rejects_invalid_key(self, database):
        with pytest.raises(CredentialVaultError):
            EncryptedCredentialVault(database, "not-a-fernet-key")

    @pytest.mark.asyncio
    async def test_round_trip_stores_only_ciphertext(self, database, platform_id):
        vault = EncryptedCredentialVault(database, EncryptedCredentialVault.generate_key())
        secret = PlatformCredentials(username="demoUser", password="hunter2", server="Rithmic Test", demo=False)

        handle = await vault.store(9, platform_id, secret)

        async with transaction_scope(database) as session:
            row = (await session.execute(select(PlatformCredentialModel))).scalar_one()
            assert row.handle == handle
            assert row.user_id == 9
            assert "hunter2" not in row.ciphertext
        assert await vault.resolve(handle) == secret

    @pytest.mark.asyncio
    async def test_other_key_cannot_decrypt(self, database, platform_id):
        writer = EncryptedCredentialVault(database, EncryptedCredentialVault.generate_key())
        reader = EncryptedCredentialVault(database, EncryptedCredentialVault.generate_key())
        handle = await writer.store(1, platform_id, PlatformCredentials("u", "p"))

        with pytest.raises(CredentialVaultError):
            await reader.resolve(handle)

    @pytest.mark.asyncio
    async def test_revoke(self, database, platform_id):
        vault = EncryptedCredentialVault(database, EncryptedCredentialVault.generate_key())
        handle = await vault.store(1, platform_id, PlatformCredentials("u", "p"))

        await vault.revoke(handle)
        await vault.revoke(handle)

        with pytest.raises(CredentialVaultError):
            await vault.resolve(handle)

    @pytest.mark.asyncio
    async def test_store_failure_is_vault_error(self, database):
        vault = EncryptedCredentialVault(database, EncryptedCredentialVault.generate_key())

        with pytest.raises(CredentialVaultError):
            await vault.store(1, 424242, PlatformCredentials("u", "p"))
