import json
from unittest.mock import MagicMock

import pytest

from auditchain.errors import LedgerError
from auditchain.ledger import (
    LedgerMirror,
    S3ObjectLockMirror,
    SqliteBlakechain,
    compute_links,
    get_ledger_mirror,
    verify_chain,
)
from auditchain.publisher import registration_message

from conftest import fixed_clock


def _append(chain, keys, n):
    for i in range(n):
        message = registration_message("2026-10-17T12:00:00+00:00", f"client-{i}", "pk")
        chain.append(keys.sign_b64url(message.encode("utf-8")), message, keys.public_key())


def test_first_entry_has_no_previous_link(blakechain, server_keys):
    _append(blakechain, server_keys, 1)
    entry = blakechain.last_entry()
    assert entry.seq == 1
    assert entry.prevhash is None
    currhash, summaryhash = compute_links(None, None, entry.data)
    assert entry.currhash == currhash
    assert entry.summaryhash == summaryhash
    assert entry.created == "2026-10-17T12:00:00+00:00"


def test_entries_link_to_previous(blakechain, server_keys):
    _append(blakechain, server_keys, 3)
    entries = blakechain.export()
    assert [e["seq"] for e in entries] == [1, 2, 3]
    assert entries[1]["prevhash"] == entries[0]["currhash"]
    assert entries[2]["prevhash"] == entries[1]["currhash"]
    assert blakechain.count() == 3
    assert verify_chain(entries) == (True, None, "ok")


def test_append_returns_linkage(blakechain, server_keys):
    message = registration_message("now", "client", "pk")
    linkage = blakechain.append(server_keys.sign_b64url(message.encode()), message, server_keys.public_key())
    assert linkage == blakechain.last_entry().linkage()


def test_verify_chain_detects_tampered_data(blakechain, server_keys):
    _append(blakechain, server_keys, 3)
    entries = blakechain.export()
    tampered = json.loads(entries[1]["data"])
    tampered["clientid"] = "someone-else"
    entries[1]["data"] = json.dumps(tampered)
    ok, seq, reason = verify_chain(entries)
    assert not ok
    assert seq == 2
    assert reason == "currhash mismatch"


def test_verify_chain_detects_removed_entry(blakechain, server_keys):
    _append(blakechain, server_keys, 3)
    entries = blakechain.export()
    del entries[1]
    ok, seq, _ = verify_chain(entries)
    assert not ok
    assert seq == 3


def test_verify_chain_detects_bad_signature(blakechain, server_keys):
    message = registration_message("now", "client", "pk")
    blakechain.append(server_keys.sign_b64url(b"something else"), message, server_keys.public_key())
    ok, seq, reason = verify_chain(blakechain.export())
    assert not ok
    assert reason == "invalid signature"


def test_entries_since(blakechain, server_keys):
    _append(blakechain, server_keys, 4)
    assert [e.seq for e in blakechain.entries_since(2)] == [3, 4]


def test_mirror_receives_each_entry(db_path, server_keys):
    mirror = MagicMock(spec=LedgerMirror)
    chain = SqliteBlakechain(db_path, clock=fixed_clock, mirror=mirror)
    _append(chain, server_keys, 2)
    assert mirror.write_entry.call_count == 2
    assert mirror.write_entry.call_args[0][0].seq == 2


def test_failed_mirror_write_undoes_append(db_path, server_keys):
    mirror = MagicMock(spec=LedgerMirror)
    mirror.write_entry.side_effect = RuntimeError("bucket unavailable")
    chain = SqliteBlakechain(db_path, clock=fixed_clock, mirror=mirror)
    with pytest.raises(LedgerError):
        _append(chain, server_keys, 1)
    assert chain.count() == 0


def test_s3_mirror_puts_locked_object(blakechain, server_keys):
    _append(blakechain, server_keys, 1)
    client = MagicMock()
    mirror = S3ObjectLockMirror(bucket="audit", prefix="chain", retention_days=30, client=client)
    entry = blakechain.last_entry()
    mirror.write_entry(entry)
    kwargs = client.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "audit"
    assert kwargs["Key"].startswith("chain/000000000001-")
    assert kwargs["ObjectLockMode"] == "COMPLIANCE"
    assert json.loads(kwargs["Body"])["currhash"] == entry.currhash


def test_get_ledger_mirror():
    assert get_ledger_mirror("none") is None
    assert isinstance(get_ledger_mirror("s3_object_lock", bucket="b"), S3ObjectLockMirror)
    with pytest.raises(ValueError):
        get_ledger_mirror("s3_object_lock")


def test_ledger_mirror_is_abstract():
    with pytest.raises(TypeError):
        LedgerMirror()
