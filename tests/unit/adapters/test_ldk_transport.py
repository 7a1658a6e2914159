"""Tests for the REST transport: request shape and error classification."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from adapters.http_client import CertificateLoadError, build_ssl_context
from adapters.ldk_transport import LdkRestTransport, classify_status, encode_body
from core.config import AppSettings
from core.domain.actions import Bolt11ReceiveRequest
from core.domain.models import (
    ConnectionConfig,
    ErrorKind,
    Fail,
    FilePathCert,
    InlinePemCert,
    Ok,
    PlatformDefaultCert,
)
from core.interfaces.transport import Operations, Transport


def _config() -> ConnectionConfig:
    return ConnectionConfig(host="node.test:3002", api_key=b"\x01\x02", cert_source=PlatformDefaultCert())


def _transport(handler) -> LdkRestTransport:
    return LdkRestTransport.from_config(
        _config(),
        AppSettings(_env_file=None),
        transport=httpx.MockTransport(handler),
    )


# ─── Request shape ──────────────────────────────────────────────────


class TestRequests:
    @pytest.mark.asyncio
    async def test_posts_json_with_api_key_header(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"node_id": "02ab"})

        transport = _transport(handler)
        outcome = await transport.call(Operations.GET_NODE_INFO)
        await transport.aclose()

        assert outcome == Ok({"node_id": "02ab"})
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "https://node.test:3002/getNodeInfo"
        assert request.headers["X-Api-Key"] == "0102"
        assert json.loads(request.content) == {}

    @pytest.mark.asyncio
    async def test_pydantic_body_drops_unset_fields(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"invoice": "lnbc1"})

        transport = _transport(handler)
        await transport.call(Operations.BOLT11_RECEIVE, Bolt11ReceiveRequest(amount_msat=1000))
        await transport.aclose()

        assert bodies == [{"amount_msat": 1000, "expiry_secs": 86400}]

    @pytest.mark.asyncio
    async def test_empty_body_is_empty_object(self):
        transport = _transport(lambda request: httpx.Response(200))
        outcome = await transport.call(Operations.CLOSE_CHANNEL, {"user_channel_id": "1"})
        await transport.aclose()
        assert outcome == Ok({})

    def test_satisfies_protocol(self):
        assert isinstance(_transport(lambda request: httpx.Response(200)), Transport)

    def test_encode_body_variants(self):
        assert encode_body(None) == {}
        assert encode_body({"a": 1}) == {"a": 1}


# ─── Error mapping ──────────────────────────────────────────────────


class TestErrorMapping:
    @pytest.mark.parametrize(
        "status, kind, retriable",
        [
            (401, ErrorKind.AUTHENTICATION, False),
            (403, ErrorKind.AUTHENTICATION, False),
            (400, ErrorKind.PROTOCOL, False),
            (404, ErrorKind.PROTOCOL, False),
            (500, ErrorKind.SERVER_FAULT, True),
            (503, ErrorKind.SERVER_FAULT, True),
        ],
    )
    @pytest.mark.asyncio
    async def test_status_codes(self, status: int, kind: ErrorKind, retriable: bool):
        transport = _transport(lambda request: httpx.Response(status, json={"message": "nope", "error_code": 3}))
        outcome = await transport.call(Operations.GET_BALANCES)
        await transport.aclose()

        assert isinstance(outcome, Fail)
        assert outcome.kind is kind
        assert outcome.retriable is retriable
        assert "nope (3)" in outcome.message

    def test_classify_success(self):
        assert classify_status(200) is None
        assert classify_status(204) is None

    @pytest.mark.asyncio
    async def test_connect_error_is_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        transport = _transport(handler)
        outcome = await transport.call(Operations.GET_NODE_INFO)
        await transport.aclose()

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.NETWORK
        assert outcome.retriable is True

    @pytest.mark.asyncio
    async def test_timeout_is_network(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        transport = _transport(handler)
        outcome = await transport.call(Operations.GET_NODE_INFO)
        await transport.aclose()

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.NETWORK

    @pytest.mark.asyncio
    async def test_certificate_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError(
                "[SSL: CERTIFICATE_VERIFY_FAILED] certificate verify failed: self-signed certificate",
                request=request,
            )

        transport = _transport(handler)
        outcome = await transport.call(Operations.GET_NODE_INFO)
        await transport.aclose()

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.CERTIFICATE
        assert outcome.retriable is False

    @pytest.mark.asyncio
    async def test_non_json_body_is_protocol(self):
        transport = _transport(lambda request: httpx.Response(200, content=b"\x08\x01"))
        outcome = await transport.call(Operations.GET_NODE_INFO)
        await transport.aclose()

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.PROTOCOL

    @pytest.mark.asyncio
    async def test_json_array_is_protocol(self):
        transport = _transport(lambda request: httpx.Response(200, json=[1, 2]))
        outcome = await transport.call(Operations.GET_NODE_INFO)
        await transport.aclose()

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.PROTOCOL


# ─── Certificates ───────────────────────────────────────────────────


class TestCertificates:
    def test_missing_file_raises(self, tmp_path: Path):
        with pytest.raises(CertificateLoadError, match="failed to read"):
            build_ssl_context(FilePathCert(path=tmp_path / "nope.crt"))

    def test_garbage_pem_raises(self):
        pem = b"-----BEGIN CERTIFICATE-----\nnot base64 at all\n-----END CERTIFICATE-----\n"
        with pytest.raises(CertificateLoadError):
            build_ssl_context(InlinePemCert(pem=pem))

    def test_platform_default_delegates_trust(self):
        assert build_ssl_context(PlatformDefaultCert()) is True

    def test_from_config_propagates_certificate_error(self, tmp_path: Path):
        config = ConnectionConfig(host="a:1", api_key=b"\x01", cert_source=FilePathCert(path=tmp_path / "x.crt"))
        with pytest.raises(CertificateLoadError):
            LdkRestTransport.from_config(config, AppSettings(_env_file=None))
