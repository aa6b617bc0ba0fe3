import json

import pytest
from typer.testing import CliRunner

from conftest import FAST_KDF_ENV
from trustline.cli import app
from trustline.encoder import ConfigurationEncoder

runner = CliRunner()


def invoke(*args):
    return runner.invoke(app, [str(a) for a in args], env=FAST_KDF_ENV)


@pytest.fixture
def pw_file(tmp_path):
    path = tmp_path / "pw.txt"
    path.write_text("cli-password\n", encoding="utf-8")
    return path


def test_encrypt_then_decrypt(tmp_path, pw_file):
    src = tmp_path / "notes.txt"
    src.write_text("my prompts ✓", encoding="utf-8")
    sealed = tmp_path / "notes.enc.json"
    plain = tmp_path / "notes.out.txt"

    result = invoke("encrypt", src, "--out", sealed, "--password-file", pw_file)
    assert result.exit_code == 0, result.output
    assert set(json.loads(sealed.read_text())) == {"cipherText", "salt", "iv"}
    assert (sealed.stat().st_mode & 0o777) == 0o600

    result = invoke("decrypt", sealed, "--out", plain, "--password-file", pw_file)
    assert result.exit_code == 0, result.output
    assert plain.read_text(encoding="utf-8") == "my prompts ✓"


def test_decrypt_with_wrong_password(tmp_path, pw_file):
    src = tmp_path / "notes.txt"
    src.write_text("secret", encoding="utf-8")
    sealed = tmp_path / "notes.enc.json"
    invoke("encrypt", src, "--out", sealed, "--password-file", pw_file)
    wrong = tmp_path / "wrong.txt"
    wrong.write_text("nope", encoding="utf-8")

    result = invoke("decrypt", sealed, "--password-file", wrong)
    assert result.exit_code == 1
    assert "wrong password" in result.output
    assert "secret" not in result.output


def test_encode_decode(tmp_path, full_config):
    config_path = tmp_path / "site.json"
    config_path.write_text(json.dumps(full_config), encoding="utf-8")

    result = invoke("encode", config_path)
    assert result.exit_code == 0, result.output
    code = result.output.strip().splitlines()[-1]
    assert code.startswith("1.")

    code_path = tmp_path / "code.txt"
    code_path.write_text(code + "\n", encoding="utf-8")
    result = invoke("decode", f"@{code_path}")
    assert result.exit_code == 0, result.output
    decoded = json.loads(result.output)
    assert decoded["hostname"] == "chat.example.com"
    assert decoded["positioning"]["zIndex"] == 999999


def test_encode_refuses_unsafe_selector(tmp_path):
    config_path = tmp_path / "site.json"
    config_path.write_text(json.dumps({
        "hostname": "example.com",
        "displayName": "Example",
        "positioning": {"selector": "img[onerror=alert(1)]", "placement": "after"},
    }), encoding="utf-8")
    result = invoke("encode", config_path)
    assert result.exit_code == 1
    assert "disallowed patterns" in result.output


def test_decode_tampered_code():
    code = ConfigurationEncoder().encode({"hostname": "example.com", "displayName": "Example"})
    tampered = code[:-1] + ("0" if code[-1] != "0" else "1")
    result = invoke("decode", tampered)
    assert result.exit_code == 1
    assert "integrity check failed" in result.output


def test_validate_code_reports_existing_hostname():
    code = ConfigurationEncoder().encode({"hostname": "example.com", "displayName": "Example"})
    result = invoke("validate", code, "--code", "--existing", "other.org", "--existing", "Example.com")
    assert result.exit_code == 0, result.output
    assert "already exists" in result.output


def test_validate_lists_every_issue(tmp_path):
    config_path = tmp_path / "site.json"
    config_path.write_text(json.dumps({"hostname": "", "displayName": ""}), encoding="utf-8")
    result = invoke("validate", config_path)
    assert result.exit_code == 1
    assert "hostname:" in result.output
    assert "displayName:" in result.output


def test_validate_security_violation_names_rule(tmp_path):
    config_path = tmp_path / "site.json"
    config_path.write_text(json.dumps({
        "hostname": "example.com",
        "displayName": "Example",
        "positioning": {"selector": "div > > span", "placement": "after"},
    }), encoding="utf-8")
    result = invoke("validate", config_path)
    assert result.exit_code == 1
    assert "[syntax-error]" in result.output


def test_seal_and_open(tmp_path, pw_file):
    dataset = {"prompts": [{"id": "1", "title": "t", "content": "c"}], "categories": []}
    data_path = tmp_path / "data.json"
    data_path.write_text(json.dumps(dataset), encoding="utf-8")
    backup = tmp_path / "backup.json"
    restored = tmp_path / "restored.json"

    result = invoke("seal", data_path, "--out", backup, "--password-file", pw_file)
    assert result.exit_code == 0, result.output
    assert json.loads(backup.read_text())["metadata"]["encrypted"] is True

    result = invoke("open", backup, "--out", restored, "--password-file", pw_file)
    assert result.exit_code == 0, result.output
    assert json.loads(restored.read_text()) == dataset


def test_open_plain_backup_needs_no_password(tmp_path):
    data_path = tmp_path / "data.json"
    data_path.write_text(json.dumps({"prompts": []}), encoding="utf-8")
    backup = tmp_path / "backup.json"
    assert invoke("seal", data_path, "--out", backup, "--plain").exit_code == 0

    result = invoke("open", backup)
    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == {"prompts": []}


def test_bad_setting_exits_2(tmp_path):
    result = runner.invoke(app, ["decode", "1.abc.0123456789abcdef"], env={"TRUSTLINE_KDF_TIME_COST": "x"})
    assert result.exit_code == 2


def test_debug_flag_still_reports_failures():
    result = invoke("--debug", "decode", "not-a-code")
    assert result.exit_code == 1
    assert "✖" in result.output


def test_encode_reports_unpaired_surrogate_cleanly(tmp_path):
    config_path = tmp_path / "site.json"
    config_path.write_text(json.dumps({"hostname": "example.com", "displayName": "a\ud800"}), encoding="utf-8")
    result = invoke("encode", config_path)
    assert result.exit_code == 1
    assert result.exception is None or isinstance(result.exception, SystemExit)
    assert "displayName" in result.output
