import json

from nacl.signing import SigningKey

from auditchain import cli
from auditchain.db import SqliteClientStore

from conftest import public_key_text


def test_keygen_writes_key_file(tmp_path, capsys):
    path = tmp_path / "server_key.json"
    assert cli.main(["keygen", "-o", str(path), "-k", "server-02"]) == 0
    data = json.loads(path.read_text())
    assert data["kid"] == "server-02"
    assert "Public key:" in capsys.readouterr().out


def test_create_admin(tmp_path, capsys):
    db = tmp_path / "cli.db"
    key = public_key_text(SigningKey.generate())
    assert cli.main(["create-admin", "-p", key, "-c", "ops", "--db", str(db)]) == 0
    client_id = capsys.readouterr().out.strip()
    record = SqliteClientStore(db).get_client(client_id)
    assert record.is_admin is True
    assert record.comment == "ops"
    assert record.public_key == key


def test_create_admin_rejects_bad_key(tmp_path, capsys):
    assert cli.main(["create-admin", "-p", "short", "--db", str(tmp_path / "cli.db")]) == 1
    assert "Invalid public key" in capsys.readouterr().err


def test_verify_chain(tmp_path, blakechain, server_keys, capsys):
    from auditchain.publisher import registration_message

    for i in range(3):
        message = registration_message("now", f"c{i}", "pk")
        blakechain.append(server_keys.sign_b64url(message.encode()), message, server_keys.public_key())

    export = tmp_path / "export.json"
    entries = blakechain.export()
    export.write_text(json.dumps({"status": "OK", "results": entries}))
    assert cli.main(["verify-chain", "-e", str(export)]) == 0
    assert "PASS: 3" in capsys.readouterr().out

    entries[2]["summaryhash"] = entries[1]["summaryhash"]
    export.write_text(json.dumps(entries))
    assert cli.main(["verify-chain", "-e", str(export)]) == 1
    assert "FAIL" in capsys.readouterr().out
