import json
import logging

import pytest
from fastapi.testclient import TestClient
from nacl.signing import SigningKey

from auditchain import main
from auditchain.config import Settings
from auditchain.crosssign import CLIENT_ID_HEADER, NullCrossSigner
from auditchain.issuer import ClientIdentityIssuer
from auditchain.keys import verify_ed25519
from auditchain.ledger import verify_chain
from auditchain.responses import SIGNATURE_HEADER
from auditchain.util import b64url_encode

from conftest import fixed_clock, public_key_text


@pytest.fixture
def services(db_path, server_keys):
    svc = main.build_services(
        Settings(version="test", publish_new_clients=True),
        db_path,
        server_keys,
        clock=fixed_clock,
        cross_signer=NullCrossSigner(),
        register_rpm=100,
    )
    main.configure(svc)
    yield svc
    main.configure(None)


@pytest.fixture
def client(services):
    return TestClient(main.app)


@pytest.fixture
def admin(services):
    sk = SigningKey.generate()
    client_id = ClientIdentityIssuer(services.store).issue(public_key_text(sk), "admin", is_admin=True)
    return client_id, sk


def signed_post(client, path, payload, client_id, sk):
    body = json.dumps(payload).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        CLIENT_ID_HEADER: client_id,
        SIGNATURE_HEADER: b64url_encode(sk.sign(body).signature),
    }
    return client.post(path, content=body, headers=headers)


def test_register_as_admin(client, admin, services, server_keys):
    new_key = SigningKey.generate()
    r = signed_post(client, "/chronicle/register", {"publickey": public_key_text(new_key)}, *admin)
    assert r.status_code == 200
    assert verify_ed25519(r.headers[SIGNATURE_HEADER], r.content, server_keys.public_key())
    data = r.json()
    new_id = data["results"]["client-id"]
    assert services.store.get_client(new_id).is_admin is False
    assert data["results"]["publish"]["currhash"] == services.ledger.last_entry().currhash


def test_registered_client_is_not_admin(client, admin):
    new_key = SigningKey.generate()
    r = signed_post(client, "/chronicle/register", {"publickey": public_key_text(new_key)}, *admin)
    new_id = r.json()["results"]["client-id"]

    other = SigningKey.generate()
    r = signed_post(client, "/chronicle/register", {"publickey": public_key_text(other)}, new_id, new_key)
    assert r.status_code == 403
    assert r.json()["message"] == "Unprivileged request"


def test_unsigned_request_401(client, services):
    r = client.post("/chronicle/register", json={"publickey": public_key_text(SigningKey.generate())})
    assert r.status_code == 401
    assert r.json()["status"] == "ERROR"
    assert services.store.count_clients() == 0


def test_wrong_signature_401(client, admin, services):
    client_id, _ = admin
    impostor = SigningKey.generate()
    r = signed_post(client, "/chronicle/register", {"publickey": public_key_text(impostor)}, client_id, impostor)
    assert r.status_code == 401
    assert services.store.count_clients() == 1


def test_unknown_client_401(client):
    sk = SigningKey.generate()
    r = signed_post(client, "/chronicle/register", {"publickey": public_key_text(sk)}, "no-such-client", sk)
    assert r.status_code == 401


def test_empty_body_406(client, admin):
    client_id, sk = admin
    r = client.post(
        "/chronicle/register",
        content=b"",
        headers={CLIENT_ID_HEADER: client_id, SIGNATURE_HEADER: b64url_encode(sk.sign(b"").signature)},
    )
    assert r.status_code == 406


def test_lasthash_and_export(client, admin, services, server_keys):
    for _ in range(2):
        key = SigningKey.generate()
        signed_post(client, "/chronicle/register", {"publickey": public_key_text(key)}, *admin)

    r = client.get("/chronicle/lasthash")
    assert r.status_code == 200
    assert r.json()["results"][0]["seq"] == 2

    r = client.get("/chronicle/export")
    assert verify_ed25519(r.headers[SIGNATURE_HEADER], r.content, server_keys.public_key())
    entries = r.json()["results"]
    assert len(entries) == 2
    assert verify_chain(entries)[0]


def test_rate_limit_429(db_path, server_keys, admin):
    svc = main.build_services(
        Settings(version="test"), db_path, server_keys,
        clock=fixed_clock, cross_signer=NullCrossSigner(), register_rpm=1,
    )
    main.configure(svc)
    try:
        client = TestClient(main.app)
        key = SigningKey.generate()
        assert signed_post(client, "/chronicle/register", {"publickey": public_key_text(key)}, *admin).status_code == 200
        r = signed_post(client, "/chronicle/register", {"publickey": public_key_text(key)}, *admin)
        assert r.status_code == 429
        assert r.headers["X-RateLimit-Remaining"] == "0"
        assert 1 <= int(r.headers["Retry-After"]) <= 60
        assert r.json()["message"] == "Rate limit exceeded"
    finally:
        main.configure(None)


def test_request_id_reaches_handler_audit_events(client, admin, caplog):
    caplog.set_level(logging.INFO, logger="auditchain.audit")
    key = SigningKey.generate()
    body = json.dumps({"publickey": public_key_text(key)}).encode("utf-8")
    client_id, sk = admin
    r = client.post("/chronicle/register", content=body, headers={
        CLIENT_ID_HEADER: client_id,
        SIGNATURE_HEADER: b64url_encode(sk.sign(body).signature),
        "X-Request-ID": "req-7f3a",
    })
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "req-7f3a"
    assert r.headers["X-RateLimit-Limit"] == "100"

    registered = [rec for rec in caplog.records
                  if getattr(rec, "extra_fields", {}).get("event_type") == "CLIENT_REGISTERED"]
    assert registered
    assert registered[0].extra_fields["request_id"] == "req-7f3a"
