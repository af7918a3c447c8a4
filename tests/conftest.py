import json
from datetime import datetime, timezone
from typing import Any, Dict, List

import pytest
from nacl.signing import SigningKey

from auditchain.config import Settings
from auditchain.crosssign import CrossSigner
from auditchain.db import SqliteClientStore, init_db
from auditchain.issuer import ClientIdentityIssuer
from auditchain.keys import LocalKeyProvider
from auditchain.ledger import LedgerPublisher, SqliteBlakechain
from auditchain.models import InboundRequest
from auditchain.publisher import ChainPublisher
from auditchain.register import RegistrationHandler
from auditchain.responses import ResponseSigner
from auditchain.timestamps import RequestTimestampValidator
from auditchain.util import b64url_encode
from auditchain.validation import RequestValidator

FIXED_NOW = datetime(2026, 10, 17, 12, 0, 0, tzinfo=timezone.utc)

ADMIN = {"authenticated": True, "administrator": True}


def fixed_clock() -> datetime:
    return FIXED_NOW


class RecordingLedger(LedgerPublisher):
    """Ledger fake that records every append."""

    def __init__(self):
        self.appends: List[Dict[str, str]] = []

    def append(self, signature: str, message: str, public_key: str) -> Dict[str, str]:
        self.appends.append({"signature": signature, "message": message, "public_key": public_key})
        return {"currhash": f"hash-{len(self.appends)}", "summaryhash": "summary", "created": "now"}

    def count(self) -> int:
        return len(self.appends)


class RecordingCrossSigner(CrossSigner):
    def __init__(self):
        self.calls = 0

    def maybe_cross_sign(self) -> List[Dict[str, Any]]:
        self.calls += 1
        return []


def public_key_text(sk: SigningKey) -> str:
    return b64url_encode(bytes(sk.verify_key))


def registration_request(payload: Any, attributes=ADMIN) -> InboundRequest:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    return InboundRequest(attributes=attributes, body=body)


@pytest.fixture
def db_path(tmp_path):
    path = tmp_path / "auditchain.db"
    init_db(path)
    return path


@pytest.fixture
def store(db_path):
    return SqliteClientStore(db_path)


@pytest.fixture
def server_keys():
    return LocalKeyProvider(SigningKey.generate(), kid="server-test")


@pytest.fixture
def client_key():
    return SigningKey.generate()


@pytest.fixture
def blakechain(db_path):
    return SqliteBlakechain(db_path, clock=fixed_clock)


@pytest.fixture
def make_handler(store, server_keys):
    """Factory for a RegistrationHandler with substitutable collaborators."""

    def _make(
        publish: bool = False,
        ledger: LedgerPublisher = None,
        cross_signer: CrossSigner = None,
        client_store=None,
        random_source=None,
        max_attempts: int = 16,
        timeout_seconds: int = 600
    ) -> RegistrationHandler:
        settings = Settings(version="test", publish_new_clients=publish, max_id_attempts=max_attempts)
        issuer_kwargs = {"clock": fixed_clock, "max_attempts": max_attempts}
        if random_source is not None:
            issuer_kwargs["random_source"] = random_source
        return RegistrationHandler(
            settings=settings,
            validator=RequestValidator(RequestTimestampValidator(timeout_seconds, clock=fixed_clock)),
            issuer=ClientIdentityIssuer(client_store or store, **issuer_kwargs),
            publisher=ChainPublisher(
                server_keys,
                ledger or RecordingLedger(),
                cross_signer or RecordingCrossSigner()
            ),
            signer=ResponseSigner(server_keys, "test", clock=fixed_clock),
            clock=fixed_clock,
        )

    return _make
