"""
Tests for retrieval.py and storage.is_valid_cid.

Covers:
  1. CID validation before any network call
  2. Primary first, then gateways in order; first success wins
  3. Exhaustion status (MALFORMED / NOT_FOUND / UNAVAILABLE)
  4. HTTP status mapping of the storage client and gateway GET
"""

import asyncio
import json

import pytest
from aiohttp import test_utils, web

from fakes import CID_A, CID_B, FakeStorageClient
from roundcrawler.errors import (
    ArtifactNotFoundError,
    StorageRetrievalError,
    StorageUploadError,
    ValidationError,
)
from roundcrawler.retrieval import RetrievalFallback, RetrievalStatus
from roundcrawler.storage import HttpStorageClient, is_valid_cid

GATEWAYS = [
    "https://one.test/ipfs/{cid}/{name}",
    "https://two.test/ipfs/{cid}/{name}",
    "https://three.test/ipfs/{cid}/{name}",
]

PAYLOAD = [{'id': "1", 'round': 1, 'data': {'id': "1"}}]


class ScriptedGateways:
    """Gateway GET stand-in: per-host response (bytes) or exception."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def __call__(self, url: str) -> bytes:
        self.calls.append(url)
        host = url.split('/')[2]
        result = self.responses.get(host, StorageRetrievalError("HTTP 502"))
        if isinstance(result, Exception):
            raise result
        return result


def fallback(primary, gateways, **kwargs):
    options = dict(storage_retries=1, gateway_attempts=1, retry_delay_s=0.0)
    options.update(kwargs)
    return RetrievalFallback(primary, GATEWAYS, gateway_fetcher=gateways, **options)


class TestCidValidation:

    @pytest.mark.parametrize("value", [CID_A, CID_B])
    def test_valid(self, value):
        assert is_valid_cid(value)

    @pytest.mark.parametrize("value", ["", None, "not a cid!", "bafy-not-a-cid", "Qm123"])
    def test_invalid(self, value):
        assert not is_valid_cid(value)

    def test_invalid_address_makes_no_network_call(self):
        primary = FakeStorageClient()
        gateways = ScriptedGateways({})
        with pytest.raises(ValidationError):
            asyncio.run(fallback(primary, gateways).fetch("not-a-cid", "dataList.json"))
        assert primary.get_calls == 0
        assert gateways.calls == []


class TestFallbackOrder:

    def test_primary_success(self):
        primary = FakeStorageClient()
        primary.blobs[CID_A] = json.dumps(PAYLOAD).encode()
        gateways = ScriptedGateways({})
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.OK
        assert result.ok
        assert result.data == PAYLOAD
        assert result.source == "primary"
        assert gateways.calls == []

    def test_second_gateway_wins_without_trying_third(self):
        primary = FakeStorageClient()
        primary.get_error = StorageRetrievalError("connection reset")
        gateways = ScriptedGateways({
            'one.test': StorageRetrievalError("HTTP 503"),
            'two.test': json.dumps(PAYLOAD).encode(),
        })
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.OK
        assert result.data == PAYLOAD
        assert result.source == f"https://two.test/ipfs/{CID_A}/dataList.json"
        assert [c.split('/')[2] for c in gateways.calls] == ["one.test", "two.test"]

    def test_attempt_counts(self):
        primary = FakeStorageClient()
        primary.get_error = StorageRetrievalError("down")
        gateways = ScriptedGateways({})
        result = asyncio.run(
            fallback(primary, gateways, storage_retries=3, gateway_attempts=2)
            .fetch(CID_A, "dataList.json")
        )
        assert result.status is RetrievalStatus.UNAVAILABLE
        assert primary.get_calls == 3
        assert len(gateways.calls) == 2 * len(GATEWAYS)

    def test_malformed_source_is_skipped(self):
        primary = FakeStorageClient()
        primary.blobs[CID_A] = b"{broken"
        gateways = ScriptedGateways({'one.test': json.dumps(PAYLOAD).encode()})
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.OK
        assert result.source.startswith("https://one.test/")


class TestExhaustion:

    def test_all_not_found(self):
        primary = FakeStorageClient()
        gateways = ScriptedGateways({
            host: ArtifactNotFoundError("HTTP 404")
            for host in ("one.test", "two.test", "three.test")
        })
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.NOT_FOUND
        assert result.data is None

    def test_one_gateway_error_page_is_unavailable(self):
        primary = FakeStorageClient()
        primary.get_error = StorageRetrievalError("connection reset")
        gateways = ScriptedGateways({'one.test': b"<html>rate limited</html>"})
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.UNAVAILABLE

    def test_same_garbage_everywhere_is_malformed(self):
        primary = FakeStorageClient()
        primary.blobs[CID_A] = b"{broken"
        gateways = ScriptedGateways({
            host: b"{broken" for host in ("one.test", "two.test", "three.test")
        })
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.MALFORMED

    def test_different_garbage_is_unavailable(self):
        primary = FakeStorageClient()
        primary.blobs[CID_A] = b"{broken"
        gateways = ScriptedGateways({
            host: f"<html>{host} error</html>".encode()
            for host in ("one.test", "two.test", "three.test")
        })
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.UNAVAILABLE

    def test_mixed_failures_are_unavailable(self):
        primary = FakeStorageClient()
        gateways = ScriptedGateways({'one.test': ArtifactNotFoundError("HTTP 404")})
        result = asyncio.run(fallback(primary, gateways).fetch(CID_A, "dataList.json"))
        assert result.status is RetrievalStatus.UNAVAILABLE

    def test_no_gateways(self):
        primary = FakeStorageClient()
        primary.get_error = StorageRetrievalError("down")
        result = asyncio.run(
            RetrievalFallback(primary, [], storage_retries=2, retry_delay_s=0.0)
            .fetch(CID_A, "dataList.json")
        )
        assert result.status is RetrievalStatus.UNAVAILABLE
        assert primary.get_calls == 2


# ====================================================================
# 4. HTTP status mapping against a local aiohttp server
# ====================================================================

def storage_app(upload_status: int = 200) -> web.Application:
    async def artifact(request):
        name = request.match_info['name']
        if name == "dataList.json":
            return web.json_response(PAYLOAD)
        if name == "broken.json":
            return web.Response(status=503, text="upstream down")
        return web.Response(status=404, text="no link named " + name)

    async def upload(request):
        await request.post()
        if upload_status >= 400:
            return web.Response(status=upload_status)
        return web.json_response({'cid': CID_A})

    app = web.Application()
    app.router.add_get('/ipfs/{cid}/{name}', artifact)
    app.router.add_post('/api/upload', upload)
    return app


def with_server(check, **app_options):
    async def scenario():
        async with test_utils.TestServer(storage_app(**app_options)) as server:
            return await check(str(server.make_url('')).rstrip('/'))
    return asyncio.run(scenario())


class TestHttpStatusMapping:

    def test_client_get_ok(self):
        async def check(base):
            return await HttpStorageClient(gateway_url=f"{base}/ipfs").get(CID_A, "dataList.json")
        assert json.loads(with_server(check)) == PAYLOAD

    def test_client_404_is_not_found(self):
        async def check(base):
            with pytest.raises(ArtifactNotFoundError):
                await HttpStorageClient(gateway_url=f"{base}/ipfs").get(CID_A, "missing.json")
        with_server(check)

    def test_client_5xx_is_retrieval_error(self):
        async def check(base):
            with pytest.raises(StorageRetrievalError) as info:
                await HttpStorageClient(gateway_url=f"{base}/ipfs").get(CID_A, "broken.json")
            return info.value
        assert not isinstance(with_server(check), ArtifactNotFoundError)

    def test_client_upload(self, tmp_path):
        artifact = tmp_path / "dataList.json"
        artifact.write_text(json.dumps(PAYLOAD), encoding="utf-8")

        async def check(base):
            return await HttpStorageClient(f"{base}/api").upload(str(artifact))
        assert with_server(check) == CID_A

    def test_client_upload_error_status(self, tmp_path):
        artifact = tmp_path / "dataList.json"
        artifact.write_text("[]", encoding="utf-8")

        async def check(base):
            with pytest.raises(StorageUploadError):
                await HttpStorageClient(f"{base}/api").upload(str(artifact))
        with_server(check, upload_status=500)

    @pytest.mark.parametrize("name, expected", [
        ("dataList.json", RetrievalStatus.OK),
        ("missing.json", RetrievalStatus.NOT_FOUND),
        ("broken.json", RetrievalStatus.UNAVAILABLE),
    ])
    def test_gateway_get(self, name, expected):
        async def check(base):
            retrieval = RetrievalFallback(
                FakeStorageClient(),
                [f"{base}/ipfs/{{cid}}/{{name}}"],
                storage_retries=1,
                gateway_attempts=1,
                retry_delay_s=0.0,
            )
            return await retrieval.fetch(CID_A, name)
        assert with_server(check).status is expected
