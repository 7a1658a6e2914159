"""Tests for the credential store and manual-entry validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from core.config import AppSettings
from core.credentials import (
    CredentialStore,
    validate_api_key_field,
    validate_cert_field,
    validate_host_field,
)
from core.domain.models import ErrorKind, Fail, FilePathCert, InlinePemCert, Ok, PlatformDefaultCert

_PEM = "-----BEGIN CERTIFICATE-----\nMIIB\n-----END CERTIFICATE-----\n"


def _store(restricted: bool = False, **overrides) -> CredentialStore:
    return CredentialStore(AppSettings(_env_file=None, **overrides), restricted=restricted)


def _cert(tmp_path: Path) -> Path:
    path = tmp_path / "tls.crt"
    path.write_text(_PEM, encoding="utf-8")
    return path


class TestFieldValidators:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("localhost:3002", "localhost:3002"),
            ("  https://node.example:3002/ ", "node.example:3002"),
            ("node.example", "node.example"),
            ("[::1]:3002", "[::1]:3002"),
        ],
    )
    def test_host_normalized(self, raw: str, expected: str):
        assert validate_host_field(raw) == expected

    @pytest.mark.parametrize(
        "raw", ["", "   ", "host:abc", "host:70000", "bad host:1", "localhost:notaport", "[::1", "::1:3002"]
    )
    def test_host_rejected(self, raw: str):
        with pytest.raises(ValueError):
            validate_host_field(raw)

    def test_api_key_hex(self):
        assert validate_api_key_field(" 00ff ") == b"\x00\xff"
        with pytest.raises(ValueError, match="hex"):
            validate_api_key_field("xyz")
        with pytest.raises(ValueError, match="required"):
            validate_api_key_field("")

    def test_cert_must_exist(self, tmp_path: Path):
        with pytest.raises(ValueError, match="not found"):
            validate_cert_field(tmp_path / "missing.crt", allow_platform_trust=False, restricted=False)
        assert validate_cert_field(_cert(tmp_path), allow_platform_trust=False, restricted=False) == FilePathCert(
            path=tmp_path / "tls.crt"
        )

    def test_empty_cert_needs_platform_trust(self):
        with pytest.raises(ValueError, match="required"):
            validate_cert_field("", allow_platform_trust=False, restricted=False)
        assert isinstance(validate_cert_field("", allow_platform_trust=True, restricted=False), PlatformDefaultCert)

    def test_restricted_environment_uses_platform_trust(self, tmp_path: Path):
        cert = validate_cert_field(tmp_path / "missing.crt", allow_platform_trust=False, restricted=True)
        assert isinstance(cert, PlatformDefaultCert)


class TestCredentialStore:
    def test_starts_empty(self):
        store = _store()
        assert store.current is None
        assert store.is_ready is False

    def test_manual_input_replaces_config(self, tmp_path: Path):
        store = _store()
        first = store.apply_manual_input("a:1", "01", _cert(tmp_path))
        second = store.apply_manual_input("b:2", "02", _cert(tmp_path))

        assert isinstance(first, Ok) and isinstance(second, Ok)
        assert store.current is second.value
        assert store.current.host == "b:2"
        assert store.source == "manual"

    def test_manual_input_rejects_unbalanced_ipv6(self, tmp_path: Path):
        store = _store()
        outcome = store.apply_manual_input("[::1", "01", _cert(tmp_path))

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION
        assert "host" in outcome.message
        assert store.current is None

    def test_manual_input_reports_every_problem(self):
        store = _store()
        outcome = store.apply_manual_input("", "nothex", "")

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION
        assert outcome.retriable is False
        assert "host" in outcome.message
        assert "hex" in outcome.message
        assert "certificate" in outcome.message
        assert store.current is None

    def test_failed_input_keeps_previous_config(self, tmp_path: Path):
        store = _store()
        store.apply_manual_input("a:1", "01", _cert(tmp_path))
        store.apply_manual_input("", "", "")
        assert store.current is not None
        assert store.current.host == "a:1"

    def test_inline_pem(self):
        store = _store()
        outcome = store.load_inline_pem("a:1", "01", _PEM)
        assert isinstance(outcome, Ok)
        assert isinstance(outcome.value.cert_source, InlinePemCert)
        assert store.source == "inline"

        rejected = store.load_inline_pem("a:1", "01", "not a pem")
        assert isinstance(rejected, Fail)
        assert "PEM" in rejected.message

    def test_load_from_settings(self, tmp_path: Path):
        assert _store().load_from_settings() is None

        store = _store(host="env-host:3002", api_key="abcd", tls_cert_path=_cert(tmp_path))
        outcome = store.load_from_settings()
        assert isinstance(outcome, Ok)
        assert store.source == "environment"
        assert store.current is not None
        assert store.current.api_key == b"\xab\xcd"

    def test_clear(self, tmp_path: Path):
        store = _store()
        store.apply_manual_input("a:1", "01", _cert(tmp_path))
        store.clear()
        assert store.current is None
        assert store.source is None
