"""CLI entrypoint tests."""

from __future__ import annotations

import json
import sys

import pytest

from covenant import __main__ as cli
from covenant.__main__ import main
from covenant.signing import verify


def test_cli_version(capsys, monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["covenant", "--version"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 0
    assert "Covenant" in capsys.readouterr().out


def test_cli_help(capsys, monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["covenant", "--help"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 0
    output = capsys.readouterr().out
    assert "usage:" in output.lower()
    assert "--create-key" in output


def test_cli_runs_uvicorn(monkeypatch) -> None:
    captured: dict[str, object] = {}

    class DummyUvicorn:
        @staticmethod
        def run(app: str, host: str, port: int, reload: bool) -> None:
            captured["app"] = app
            captured["host"] = host
            captured["port"] = port
            captured["reload"] = reload

    monkeypatch.setitem(sys.modules, "uvicorn", DummyUvicorn)
    monkeypatch.delenv("COVENANT_HTTP_PORT", raising=False)
    monkeypatch.setattr(sys, "argv", ["covenant"])
    main()

    assert captured == {
        "app": "covenant.main:app",
        "host": "0.0.0.0",
        "port": 8070,
        "reload": False,
    }


def test_cli_port_from_environment(monkeypatch) -> None:
    captured: dict[str, object] = {}

    class DummyUvicorn:
        @staticmethod
        def run(app: str, host: str, port: int, reload: bool) -> None:
            captured["port"] = port

    monkeypatch.setitem(sys.modules, "uvicorn", DummyUvicorn)
    monkeypatch.setenv("COVENANT_HTTP_PORT", "9123")
    monkeypatch.setattr(sys, "argv", ["covenant", "--host", "127.0.0.1"])
    main()

    assert captured["port"] == 9123


def test_cli_sign_inline_payload(capsys, monkeypatch) -> None:
    monkeypatch.setattr(
        sys, "argv", ["covenant", "--sign", '{"b": 2, "a": 1}', "--secret", "s3cret"]
    )
    main()

    signed = json.loads(capsys.readouterr().out)
    assert signed["a"] == 1
    assert verify(signed, "s3cret") is True


def test_cli_sign_long_inline_payload(capsys, monkeypatch) -> None:
    note = "x" * 300
    monkeypatch.setattr(
        sys, "argv", ["covenant", "--sign", f'{{"note": "{note}"}}', "--secret", "s3cret"]
    )
    main()

    signed = json.loads(capsys.readouterr().out)
    assert signed["note"] == note
    assert verify(signed, "s3cret") is True


def test_cli_sign_reads_file(tmp_path, capsys, monkeypatch) -> None:
    payload_path = tmp_path / "payload.json"
    payload_path.write_text('{"method": "demo.echo"}', encoding="utf-8")
    monkeypatch.setattr(
        sys, "argv", ["covenant", "--sign", str(payload_path), "--secret", "s3cret"]
    )
    main()

    signed = json.loads(capsys.readouterr().out)
    assert signed["method"] == "demo.echo"
    assert verify(signed, "s3cret") is True


def test_cli_sign_requires_secret(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["covenant", "--sign", "{}"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 2


def test_cli_sign_rejects_non_object(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["covenant", "--sign", "[1, 2]", "--secret", "s"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 2


def test_cli_sign_missing_file_is_a_usage_error(tmp_path, monkeypatch) -> None:
    missing = str(tmp_path / "absent.json")
    monkeypatch.setattr(sys, "argv", ["covenant", "--sign", missing, "--secret", "s"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 2


def test_cli_mode_flags_are_exclusive(monkeypatch) -> None:
    monkeypatch.setattr(sys, "argv", ["covenant", "--create-key", "--enable-key", "k"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 2


def test_cli_create_and_disable_key(tmp_path, capsys, monkeypatch, cache) -> None:
    db_path = str(tmp_path / "cli.db")
    monkeypatch.setenv("COVENANT_DB_PATH", db_path)
    monkeypatch.setattr(cli, "create_redis_client", lambda url: cache.redis)

    monkeypatch.setattr(sys, "argv", ["covenant", "--create-key"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 0
    pair = json.loads(capsys.readouterr().out)
    assert pair["key"].endswith(".key")
    assert pair["secret"].endswith(".secret")

    monkeypatch.setattr(sys, "argv", ["covenant", "--disable-key", pair["key"]])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 0
    assert json.loads(capsys.readouterr().out) == {"key": pair["key"], "disabled": True}


def test_cli_disable_key_reports_cache_failure(tmp_path, capsys, monkeypatch, fake_redis) -> None:
    monkeypatch.setenv("COVENANT_DB_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setattr(cli, "create_redis_client", lambda url: fake_redis)
    fake_redis.fail = True

    monkeypatch.setattr(sys, "argv", ["covenant", "--disable-key", "missing.key"])
    with pytest.raises(SystemExit) as excinfo:
        main()
    assert excinfo.value.code == 1
    assert '"type": "db_error"' in capsys.readouterr().err
