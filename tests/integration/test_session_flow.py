"""End-to-end flow over the real transport with a mocked HTTP layer.

No config on disk → pasted config → connect → first payments page →
disconnect, plus an invalid action that must never hit the wire.
"""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from adapters.ldk_transport import LdkRestTransport
from core.config import AppSettings
from core.config_resolver import ConfigResolver, load_config_text
from core.credentials import CredentialStore
from core.dispatcher import ActionDispatcher
from core.domain.actions import SendOnchain
from core.domain.models import ErrorKind, Fail, Ok, SessionState
from core.paginator import payments_fetcher
from core.session import SessionManager

_CONFIG = """
[node]
network = "regtest"
listening_address = "localhost:9735"
rest_service_address = "127.0.0.1:3002"

[storage.disk]
dir_path = "/tmp/ldk-server-does-not-exist"

[bitcoind]
rpc_address = "127.0.0.1:18443"
rpc_user = "user"
rpc_password = "pass"
"""


class FakeServer:
    """Handler de `httpx.MockTransport` que imita el REST service."""

    def __init__(self, payments: int = 45, server_page_size: int = 30):
        self.server_page_size = server_page_size
        self.payments = [
            {"id": f"{i:064x}", "amount_msat": 1000 * i, "direction": i % 2, "status": 1, "latest_update_timestamp": i}
            for i in range(payments)
        ]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("X-Api-Key") != "c0ffee":
            return httpx.Response(401, json={"message": "invalid api key", "error_code": 2})
        if request.url.path == "/getNodeInfo":
            return httpx.Response(200, json={"node_id": "03" + "ee" * 32})
        if request.url.path == "/listPayments":
            token = json.loads(request.content).get("page_token")
            start = token["index"] if token else 0
            end = start + self.server_page_size
            body: dict = {"payments": self.payments[start:end]}
            if end < len(self.payments):
                body["next_page_token"] = {"token": f"t{end}", "index": end}
            return httpx.Response(200, json=body)
        return httpx.Response(404, json={"message": "unknown endpoint"})


def _session(server: FakeServer, settings: AppSettings) -> SessionManager:
    return SessionManager(
        settings,
        transport_factory=lambda config: LdkRestTransport.from_config(
            config, settings, transport=httpx.MockTransport(server)
        ),
    )


class TestSessionFlow:
    @pytest.mark.asyncio
    async def test_connect_page_disconnect(self, tmp_path: Path):
        settings = AppSettings(_env_file=None)
        server = FakeServer()

        # (a) nada en disco
        resolution = ConfigResolver(settings, base_dir=tmp_path / "console", environ={}).resolve()
        assert resolution.config is None

        # (b) config pegada
        config = load_config_text(_CONFIG, api_key_hex="c0ffee", restricted=True)
        assert config is not None
        store = CredentialStore(settings, restricted=True)
        store.load(config, "pasted")
        assert store.current is config

        # (c) connect
        session = _session(server, settings)
        fetcher = payments_fetcher(session, settings)
        outcome = await session.connect(store.current)
        assert isinstance(outcome, Ok)
        assert session.state is SessionState.CONNECTED

        # (d) primera página
        page = await fetcher.fetch_page(None, 20)
        assert isinstance(page, Ok)
        assert len(page.value.items) == 20
        assert page.value.has_more is True

        walked = await fetcher.walk(10)
        assert isinstance(walked, Ok)
        assert [len(p.items) for p in walked.value] == [20, 10, 15]
        assert [rec.id for rec in walked.value[0].items + walked.value[1].items] == [
            r["id"] for r in server.payments[:30]
        ]

        # (e) disconnect
        await session.disconnect()
        assert session.state is SessionState.DISCONNECTED
        assert fetcher.cached(None) is None
        assert fetcher.current_index == -1

    @pytest.mark.asyncio
    async def test_wrong_key_is_authentication_error(self):
        settings = AppSettings(_env_file=None)
        config = load_config_text(_CONFIG, api_key_hex="beef", restricted=True)
        assert config is not None
        session = _session(FakeServer(), settings)

        outcome = await session.connect(config)

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.AUTHENTICATION
        assert outcome.retriable is False
        assert session.state is SessionState.ERROR

    @pytest.mark.asyncio
    async def test_invalid_send_never_hits_the_wire(self):
        settings = AppSettings(_env_file=None)
        server = FakeServer()
        config = load_config_text(_CONFIG, api_key_hex="c0ffee", restricted=True)
        session = _session(server, settings)
        await session.connect(config)
        before = len(server.requests)

        outcome = await ActionDispatcher(session).dispatch(SendOnchain(address="bcrt1qtest", amount_sats=-1))

        assert isinstance(outcome, Fail)
        assert outcome.kind is ErrorKind.VALIDATION
        assert len(server.requests) == before
        await session.disconnect()
