"""Tests for the reference server's vault endpoints and account store."""

import pytest
from fastapi.testclient import TestClient

from blackhole_vault.api.main import create_app
from blackhole_vault.api.store import AccountStore, DuplicateEmail, RevisionMismatch
from blackhole_vault.vault.encryption import EncryptionService

SALT_B64 = EncryptionService.encode_for_storage(b"\x05" * 16)
KEY_B64 = EncryptionService.encode_for_storage(b"\x09" * 32)


def _envelope(ciphertext="Y2lwaGVy", created="2025-01-01T00:00:00.000Z"):
    return {
        "version": 1,
        "kdf": "PBKDF2",
        "iterations": 250000,
        "salt": SALT_B64,
        "iv": EncryptionService.encode_for_storage(b"\x00" * 12),
        "ciphertext": ciphertext,
        "createdAt": created,
        "updatedAt": created,
    }


@pytest.fixture
def client(settings):
    client = TestClient(create_app(settings))
    resp = client.post(
        "/auth/register", json={"email": "a@x.com", "authSalt": SALT_B64, "keyAuth": KEY_B64}
    )
    assert resp.status_code == 200
    return client


# ── Auth requirement ────────────────────────────────────────────────


class TestVaultAuth:

    def test_get_requires_session(self, settings):
        client = TestClient(create_app(settings))
        resp = client.get("/vault")
        assert resp.status_code == 401
        assert resp.json()["detail"] == "Unauthorized"

    def test_post_requires_session(self, settings):
        client = TestClient(create_app(settings))
        assert client.post("/vault", json={"vault": _envelope()}).status_code == 401

    def test_bogus_cookie(self, settings):
        client = TestClient(create_app(settings))
        client.cookies.set(settings.SESSION_COOKIE, "forged")
        assert client.get("/vault").status_code == 401

    def test_logout_revokes_access(self, client):
        client.post("/vault", json={"vault": _envelope()})
        token = client.cookies.get("blackhole-session")
        assert client.app.state.sessions.get(token) is not None
        client.post("/auth/logout")
        assert client.app.state.sessions.get(token) is None
        assert client.get("/vault").status_code == 401


# ── Read / write ────────────────────────────────────────────────────


class TestVaultReadWrite:

    def test_no_vault_yet(self, client):
        resp = client.get("/vault")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Vault not found"

    def test_store_and_fetch_verbatim(self, client):
        env = _envelope()
        resp = client.post("/vault", json={"vault": env})
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "revision": 1}

        fetched = client.get("/vault").json()
        assert fetched["vault"] == env
        assert fetched["revision"] == 1

    def test_last_writer_wins(self, client):
        client.post("/vault", json={"vault": _envelope("Zmlyc3Q=")})
        resp = client.post("/vault", json={"vault": _envelope("c2Vjb25k")})
        assert resp.json()["revision"] == 2
        assert client.get("/vault").json()["vault"]["ciphertext"] == "c2Vjb25k"

    def test_missing_envelope_field(self, client):
        env = _envelope()
        del env["ciphertext"]
        assert client.post("/vault", json={"vault": env}).status_code == 422

    def test_accounts_are_isolated(self, client, settings):
        client.post("/vault", json={"vault": _envelope()})
        other = TestClient(client.app)
        other.post(
            "/auth/register",
            json={"email": "b@x.com", "authSalt": SALT_B64, "keyAuth": KEY_B64},
        )
        assert other.get("/vault").status_code == 404


# ── Conditional writes ──────────────────────────────────────────────


class TestConditionalWrite:

    def test_first_write_expects_zero(self, client):
        resp = client.post("/vault", json={"vault": _envelope(), "expectedRevision": 0})
        assert resp.status_code == 200
        assert resp.json()["revision"] == 1

    def test_matching_revision(self, client):
        client.post("/vault", json={"vault": _envelope()})
        resp = client.post("/vault", json={"vault": _envelope(), "expectedRevision": 1})
        assert resp.json()["revision"] == 2

    def test_stale_revision(self, client):
        client.post("/vault", json={"vault": _envelope("Zmlyc3Q=")})
        client.post("/vault", json={"vault": _envelope("c2Vjb25k")})
        resp = client.post("/vault", json={"vault": _envelope("dGhpcmQ="), "expectedRevision": 1})
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Vault was modified"
        assert client.get("/vault").json()["vault"]["ciphertext"] == "c2Vjb25k"

    def test_negative_revision_rejected(self, client):
        resp = client.post("/vault", json={"vault": _envelope(), "expectedRevision": -1})
        assert resp.status_code == 422


# ── Store ───────────────────────────────────────────────────────────


class TestAccountStore:

    @pytest.fixture
    def store(self, tmp_path):
        return AccountStore(str(tmp_path / "store.db"))

    def test_duplicate_email(self, store):
        store.create_user("a@x.com", SALT_B64, "hash")
        with pytest.raises(DuplicateEmail):
            store.create_user("a@x.com", SALT_B64, "hash")

    def test_unknown_user(self, store):
        assert store.get_user("nobody@x.com") is None

    def test_revision_counter(self, store):
        uid = store.create_user("a@x.com", SALT_B64, "hash")
        assert store.get_vault(uid) is None
        assert store.put_vault(uid, _envelope()) == 1
        assert store.put_vault(uid, _envelope()) == 2
        env, revision = store.get_vault(uid)
        assert revision == 2
        assert env == _envelope()

    def test_cas_mismatch(self, store):
        uid = store.create_user("a@x.com", SALT_B64, "hash")
        store.put_vault(uid, _envelope())
        with pytest.raises(RevisionMismatch) as exc:
            store.put_vault(uid, _envelope(), expected_revision=0)
        assert exc.value.expected == 0
        assert exc.value.actual == 1

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "store.db")
        uid = AccountStore(path).create_user("a@x.com", SALT_B64, "hash")
        AccountStore(path).put_vault(uid, _envelope())
        assert AccountStore(path).get_vault(uid)[1] == 1
