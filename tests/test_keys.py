import json
from unittest.mock import MagicMock

import pytest
from nacl.signing import SigningKey

from auditchain.keys import (
    AwsKmsEd25519Provider,
    FileKeyProvider,
    get_key_provider,
    load_verify_key,
    verify_ed25519,
    write_key_file,
)
from auditchain.util import b64url_decode, b64url_encode

# DER SubjectPublicKeyInfo prefix for Ed25519 keys
ED25519_SPKI_PREFIX = bytes.fromhex("302a300506032b6570032100")


def test_b64url_round_trip_without_padding():
    raw = bytes(range(32))
    text = b64url_encode(raw)
    assert "=" not in text
    assert len(text) == 43
    assert b64url_decode(text) == raw
    assert b64url_decode(text + "=") == raw


@pytest.mark.parametrize("bad", ["a", "abc$", "has space!", "abéd"])
def test_b64url_decode_rejects_invalid(bad):
    with pytest.raises(ValueError):
        b64url_decode(bad)


def test_load_verify_key_checks_length():
    with pytest.raises(ValueError, match="32 bytes"):
        load_verify_key(b64url_encode(b"\x00" * 31))


def test_file_key_provider(tmp_path):
    path = tmp_path / "secrets" / "key.json"
    public_key = write_key_file(str(path), kid="server-07")
    assert json.loads(path.read_text())["kid"] == "server-07"

    provider = FileKeyProvider(str(path))
    assert provider.get_kid() == "server-07"
    assert provider.public_key() == public_key
    sig = provider.sign_b64url(b"payload")
    assert verify_ed25519(sig, b"payload", public_key)
    assert not verify_ed25519(sig, b"other", public_key)


def test_verify_rejects_garbage_inputs():
    assert not verify_ed25519("***", b"x", "***")
    assert not verify_ed25519("", b"x", b64url_encode(b"\x00" * 32))


def test_kms_provider_signs_and_fetches_public_key():
    sk = SigningKey.generate()
    kms = MagicMock()
    kms.sign.side_effect = lambda **kw: {"Signature": sk.sign(kw["Message"]).signature}
    kms.get_public_key.return_value = {"PublicKey": ED25519_SPKI_PREFIX + bytes(sk.verify_key)}

    provider = AwsKmsEd25519Provider(kms_key_id="alias/chain", client=kms)
    assert provider.public_key() == b64url_encode(bytes(sk.verify_key))
    sig = provider.sign_b64url(b"payload")
    assert verify_ed25519(sig, b"payload", provider.public_key())
    assert kms.sign.call_args.kwargs["SigningAlgorithm"] == "ED25519_SHA_512"
    assert kms.get_public_key.call_count == 1


def test_get_key_provider_requires_kms_key_id():
    with pytest.raises(ValueError):
        get_key_provider(signer_type="aws_kms")
    provider = get_key_provider(signer_type="aws_kms", kms_key_id="k", kms_public_key="pk")
    assert provider.public_key() == "pk"
