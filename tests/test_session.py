"""
Tests for the client-side VaultSession state machine.

Each test runs one or more sessions against a fresh reference server
through httpx.ASGITransport, so the full path (key derivation, envelope
encryption, HTTP, bcrypt, SQLite) is exercised.
"""

import asyncio
import dataclasses

import httpx
import pytest

from blackhole_vault.api.main import create_app
from blackhole_vault.sync.client import SESSION_ANONYMOUS, SyncClient
from blackhole_vault.vault.encryption import EncryptionService
from blackhole_vault.vault.entries import new_entry, upsert_entry, update_scratch
from blackhole_vault.vault.exceptions import (
    AccountExists,
    DecryptionFailure,
    InvalidCredentials,
    NotAuthenticated,
    VaultLocked,
    VersionConflict,
)
from blackhole_vault.vault.keys import derive_keys
from blackhole_vault.vault.session import SessionState, VaultSession

EMAIL = "a@x.com"
PASSCODE = "correct horse battery staple"


def _client(app):
    return SyncClient(
        "http://testserver", max_retries=1, backoff=0,
        transport=httpx.ASGITransport(app=app),
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


# ── Register / login ────────────────────────────────────────────────


class TestRegisterAndLogin:

    @pytest.mark.asyncio
    async def test_register_unlocks_empty_vault(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)

            assert session.state == SessionState.UNLOCKED
            assert session.email == EMAIL
            assert session.vault.version == 1
            assert session.vault.passwords == []
            assert session.revision == 1

    @pytest.mark.asyncio
    async def test_server_never_sees_plaintext(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            vault = upsert_entry(session.vault, new_entry("github", "hunter2-secret"), "password")
            await session.save(vault)

        user = app.state.store.get_user(EMAIL)
        envelope, _ = app.state.store.get_vault(user["id"])
        stored = repr(user) + repr(envelope)
        assert "hunter2-secret" not in stored
        assert "github" not in stored
        assert PASSCODE not in stored

    @pytest.mark.asyncio
    async def test_save_then_login_elsewhere(self, app, settings):
        async with _client(app) as client:
            first = VaultSession(client, settings)
            await first.register(EMAIL, PASSCODE)
            vault = upsert_entry(first.vault, new_entry("github", "hunter2", username="octo"), "password")
            vault = update_scratch(vault, "remember the milk")
            saved = await first.save(vault)
            assert saved.version == 2

        async with _client(app) as client:
            second = VaultSession(client, settings)
            state = await second.login(EMAIL, PASSCODE)

            assert state == SessionState.UNLOCKED
            assert second.vault == saved
            assert second.vault.passwords[0].username == "octo"
            assert second.vault.scratch == "remember the milk"
            assert second.revision == 2

    @pytest.mark.asyncio
    async def test_wrong_passcode(self, app, settings):
        async with _client(app) as client:
            await VaultSession(client, settings).register(EMAIL, PASSCODE)

        async with _client(app) as client:
            session = VaultSession(client, settings)
            with pytest.raises(InvalidCredentials):
                await session.login(EMAIL, "wrong")
            assert session.state == SessionState.LOGGED_OUT
            assert session.email is None
            with pytest.raises(VaultLocked):
                session.vault

    @pytest.mark.asyncio
    async def test_unknown_email_looks_like_wrong_passcode(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            with pytest.raises(InvalidCredentials) as exc:
                await session.login("ghost@x.com", PASSCODE)
            assert exc.value.user_message == "Invalid credentials"
            assert session.state == SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_duplicate_register(self, app, settings):
        async with _client(app) as client:
            await VaultSession(client, settings).register(EMAIL, PASSCODE)

        async with _client(app) as client:
            session = VaultSession(client, settings)
            with pytest.raises(AccountExists):
                await session.register(EMAIL, "another passcode")
            assert session.state == SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_hkdf_key_scheme(self, app, settings):
        hkdf = dataclasses.replace(settings, KEY_SCHEME="hkdf")
        async with _client(app) as client:
            await VaultSession(client, hkdf).register(EMAIL, PASSCODE)

        async with _client(app) as client:
            session = VaultSession(client, hkdf)
            assert await session.login(EMAIL, PASSCODE) == SessionState.UNLOCKED

        async with _client(app) as client:
            with pytest.raises(InvalidCredentials):
                await VaultSession(client, settings).login(EMAIL, PASSCODE)

    @pytest.mark.asyncio
    async def test_tampered_vault_fails_to_open(self, app, settings):
        async with _client(app) as client:
            await VaultSession(client, settings).register(EMAIL, PASSCODE)

        store = app.state.store
        user_id = store.get_user(EMAIL)["id"]
        envelope, _ = store.get_vault(user_id)
        raw = bytearray(EncryptionService.decode_from_storage(envelope["ciphertext"]))
        raw[0] ^= 0xFF
        envelope["ciphertext"] = EncryptionService.encode_for_storage(bytes(raw))
        store.put_vault(user_id, envelope)

        async with _client(app) as client:
            session = VaultSession(client, settings)
            with pytest.raises(DecryptionFailure):
                await session.login(EMAIL, PASSCODE)
            assert session.state == SessionState.LOGGED_OUT


# ── Setup needed ────────────────────────────────────────────────────


class TestSetupNeeded:

    @pytest.mark.asyncio
    async def test_account_without_vault(self, app, settings):
        salt = EncryptionService.generate_salt()
        keys = derive_keys(PASSCODE, salt)
        async with _client(app) as client:
            await client.register(EMAIL, salt, bytes(keys.auth_key_bytes))

        async with _client(app) as client:
            session = VaultSession(client, settings)
            assert await session.login(EMAIL, PASSCODE) == SessionState.SETUP_NEEDED
            with pytest.raises(VaultLocked):
                session.vault

            await session.initialize_vault()
            assert session.state == SessionState.UNLOCKED
            assert session.vault.version == 1

    @pytest.mark.asyncio
    async def test_initialize_requires_setup_state(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            with pytest.raises(VaultLocked):
                await session.initialize_vault()


# ── Save ────────────────────────────────────────────────────────────


class TestSave:

    @pytest.mark.asyncio
    async def test_save_bumps_version_each_time(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            for expected in (2, 3, 4):
                saved = await session.save(session.vault)
                assert saved.version == expected
            assert session.revision == 4

    @pytest.mark.asyncio
    async def test_vault_property_is_a_copy(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            view = session.vault
            view.scratch = "not saved"
            assert session.vault.scratch == ""

    @pytest.mark.asyncio
    async def test_save_requires_unlock(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            vault = session.vault
            session.lock()
            with pytest.raises(VaultLocked):
                await session.save(vault)

    @pytest.mark.asyncio
    async def test_saves_from_one_snapshot_keep_increasing(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            base = session.vault

            first = await session.save(upsert_entry(base, new_entry("a", "1"), "password"))
            second = await session.save(upsert_entry(base, new_entry("b", "2"), "password"))

            assert (first.version, second.version) == (2, 3)
            assert session.vault.version == 3

    @pytest.mark.asyncio
    async def test_lock_during_upload_drops_plaintext(self, app, settings, monkeypatch):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)

            started, release = asyncio.Event(), asyncio.Event()
            put_vault = client.put_vault

            async def held_put_vault(*args, **kwargs):
                started.set()
                await release.wait()
                return await put_vault(*args, **kwargs)

            monkeypatch.setattr(client, "put_vault", held_put_vault)
            entry = new_entry("mail", "hunter2")
            task = asyncio.create_task(
                session.save(upsert_entry(session.vault, entry, "password"))
            )
            await started.wait()
            session.lock()
            release.set()

            with pytest.raises(VaultLocked):
                await task
            assert session.state == SessionState.LOCKED
            assert session._vault is None
            assert session._vault_key is None

    @pytest.mark.asyncio
    async def test_logout_during_upload_drops_plaintext(self, app, settings, monkeypatch):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)

            started, release = asyncio.Event(), asyncio.Event()
            put_vault = client.put_vault

            async def held_put_vault(*args, **kwargs):
                started.set()
                await release.wait()
                return await put_vault(*args, **kwargs)

            monkeypatch.setattr(client, "put_vault", held_put_vault)
            task = asyncio.create_task(session.save(update_scratch(session.vault, "notes")))
            await started.wait()
            await session.logout()
            release.set()

            with pytest.raises((VaultLocked, NotAuthenticated)):
                await task
            assert session.state == SessionState.LOGGED_OUT
            assert session._vault is None

    @pytest.mark.asyncio
    async def test_conflict_keeps_local_state(self, app, settings):
        cas = dataclasses.replace(settings, CAS=True)
        async with _client(app) as client_a, _client(app) as client_b:
            a = VaultSession(client_a, cas)
            await a.register(EMAIL, PASSCODE)
            b = VaultSession(client_b, cas)
            await b.login(EMAIL, PASSCODE)

            await a.save(upsert_entry(a.vault, new_entry("from-a", "x"), "password"))

            before = b.vault
            with pytest.raises(VersionConflict):
                await b.save(upsert_entry(b.vault, new_entry("from-b", "y"), "password"))
            assert b.vault == before
            assert b.revision == 1
            assert b.state == SessionState.UNLOCKED

    @pytest.mark.asyncio
    async def test_last_writer_wins_without_cas(self, app, settings):
        async with _client(app) as client_a, _client(app) as client_b:
            a = VaultSession(client_a, settings)
            await a.register(EMAIL, PASSCODE)
            b = VaultSession(client_b, settings)
            await b.login(EMAIL, PASSCODE)

            await a.save(upsert_entry(a.vault, new_entry("from-a", "x"), "password"))
            await b.save(upsert_entry(b.vault, new_entry("from-b", "y"), "password"))

        async with _client(app) as client:
            c = VaultSession(client, settings)
            await c.login(EMAIL, PASSCODE)
            assert [e.service for e in c.vault.passwords] == ["from-b"]

    @pytest.mark.asyncio
    async def test_expired_server_session_locks(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            app.state.sessions._sessions.clear()

            with pytest.raises(NotAuthenticated):
                await session.save(session.vault)
            assert session.state == SessionState.LOCKED


# ── Lock / unlock / logout ──────────────────────────────────────────


class TestLockAndLogout:

    @pytest.mark.asyncio
    async def test_lock_wipes_key(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            key = session._vault_key

            session.lock()
            assert session.state == SessionState.LOCKED
            assert key.is_wiped
            assert session._vault_key is None
            assert session.email == EMAIL
            with pytest.raises(VaultLocked):
                session.vault

    @pytest.mark.asyncio
    async def test_unlock(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            session.lock()

            assert await session.unlock(PASSCODE) == SessionState.UNLOCKED
            assert session.vault.version == 1

    @pytest.mark.asyncio
    async def test_unlock_wrong_passcode(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            session.lock()

            with pytest.raises(InvalidCredentials):
                await session.unlock("nope")
            assert session.state == SessionState.LOGGED_OUT

    @pytest.mark.asyncio
    async def test_unlock_requires_locked_state(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            with pytest.raises(VaultLocked):
                await session.unlock(PASSCODE)

    @pytest.mark.asyncio
    async def test_logout(self, app, settings):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            key = session._vault_key

            await session.logout()
            assert session.state == SessionState.LOGGED_OUT
            assert session.email is None
            assert key.is_wiped
            assert len(app.state.sessions) == 0
            assert await client.check_session() == SESSION_ANONYMOUS

    @pytest.mark.asyncio
    async def test_logout_survives_network_failure(self, settings):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        client = SyncClient(
            "http://testserver", max_retries=1, backoff=0,
            transport=httpx.MockTransport(handler),
        )
        async with client:
            session = VaultSession(client, settings)
            await session.logout()
            assert session.state == SessionState.LOGGED_OUT


class TestAuditTrail:

    @pytest.mark.asyncio
    async def test_session_expiry_is_audited(self, app, settings, tmp_path):
        async with _client(app) as client:
            session = VaultSession(client, settings)
            await session.register(EMAIL, PASSCODE)
            app.state.sessions._sessions.clear()
            with pytest.raises(NotAuthenticated):
                await session.save(session.vault)

        session.audit._file_handler.flush()
        text = "".join(p.read_text() for p in (tmp_path / "audit_logs").glob("audit_*.log"))
        assert "auth.session.expired" in text
        assert PASSCODE not in text
