import base64
import json

import httpx
import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from copytrader.errors import UpstreamError, UpstreamTimeoutError
from copytrader.helius_client import HeliusClient
from copytrader.kalshi_client import KalshiClient, load_private_key, parse_market
from copytrader.schemas import MarketStatus


@pytest.fixture
def kalshi_config(config):
    return config.model_copy(update={"KALSHI_BASE_URL": "https://kalshi.test"})


def kalshi(config, handler):
    return KalshiClient(config, transport=httpx.MockTransport(handler))


@pytest.fixture(scope="module")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="module")
def private_pem(private_key):
    return private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


class TestParseMarket:
    def test_status_mapping(self):
        assert parse_market({"ticker": "A", "status": "active"}).status == MarketStatus.OPEN
        assert parse_market({"ticker": "A", "status": "finalized"}).status == MarketStatus.SETTLED
        assert parse_market({"ticker": "A", "status": "closed"}).status == MarketStatus.CLOSED

    def test_fields(self):
        market = parse_market({
            "ticker": "PRES-24-DJT",
            "title": "Donald Trump wins presidency",
            "yes_sub_title": "Trump",
            "status": "open",
            "volume": 1200,
            "open_time": "2024-01-01T00:00:00Z",
            "yes_ask": 51,
            "no_ask": 50,
        })
        assert market.subtitle == "Trump"
        assert market.volume == 1200.0
        assert market.open_time.year == 2024
        assert market.open_time.utcoffset().total_seconds() == 0
        assert market.yes_ask == 51


class TestLoadPrivateKey:
    def test_escaped_newlines(self, private_pem):
        escaped = private_pem.replace("\n", "\\n")
        assert load_private_key(escaped).key_size == 2048

    def test_base64(self, private_pem):
        encoded = base64.b64encode(private_pem.encode("ascii")).decode("ascii")
        assert load_private_key(encoded).key_size == 2048


class TestKalshiClient:
    @pytest.mark.asyncio
    async def test_get_markets_follows_cursor(self, kalshi_config):
        seen = []

        def handler(request):
            seen.append(dict(request.url.params))
            if "cursor" not in request.url.params:
                return httpx.Response(200, json={"markets": [{"ticker": "A", "status": "open"}], "cursor": "next"})
            return httpx.Response(200, json={"markets": [{"ticker": "B", "status": "open"}, {"status": "open"}],
                                             "cursor": ""})

        async with kalshi(kalshi_config, handler) as client:
            markets = await client.get_markets(limit=2, max_pages=5)

        assert [m.ticker for m in markets] == ["A", "B"]
        assert seen[0] == {"status": "open", "limit": "2"}
        assert seen[1]["cursor"] == "next"

    @pytest.mark.asyncio
    async def test_max_pages_bounds_the_fetch(self, kalshi_config):
        def handler(request):
            return httpx.Response(200, json={"markets": [{"ticker": "A", "status": "open"}], "cursor": "more"})

        async with kalshi(kalshi_config, handler) as client:
            assert len(await client.get_markets(max_pages=3)) == 3

    @pytest.mark.asyncio
    async def test_balance_in_dollars(self, kalshi_config):
        def handler(request):
            assert request.url.path == "/trade-api/v2/portfolio/balance"
            return httpx.Response(200, json={"balance": 1234})

        async with kalshi(kalshi_config, handler) as client:
            assert await client.get_balance() == 12.34

    @pytest.mark.asyncio
    async def test_create_order(self, kalshi_config):
        def handler(request):
            body = json.loads(request.content)
            assert request.method == "POST"
            assert body == {"ticker": "PRES-24-DJT", "action": "buy", "side": "yes", "count": 10,
                            "type": "market", "client_order_id": "abc"}
            return httpx.Response(201, json={"order": {"order_id": "ord-9", "status": "executed"}})

        async with kalshi(kalshi_config, handler) as client:
            order = await client.create_order("PRES-24-DJT", "buy", "yes", 10, client_order_id="abc")
        assert order["order_id"] == "ord-9"

    @pytest.mark.asyncio
    async def test_timeout_maps_to_upstream_timeout(self, kalshi_config):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with kalshi(kalshi_config, handler) as client:
            with pytest.raises(UpstreamTimeoutError):
                await client.get_balance()

    @pytest.mark.asyncio
    async def test_http_error_maps_to_upstream_error(self, kalshi_config):
        def handler(request):
            return httpx.Response(503, text="maintenance")

        async with kalshi(kalshi_config, handler) as client:
            with pytest.raises(UpstreamError) as exc:
                await client.get_markets()
        assert "503" in str(exc.value)

    @pytest.mark.asyncio
    async def test_unsigned_without_credentials(self, kalshi_config):
        def handler(request):
            assert "KALSHI-ACCESS-SIGNATURE" not in request.headers
            return httpx.Response(200, json={"balance": 0})

        async with kalshi(kalshi_config, handler) as client:
            await client.get_balance()

    @pytest.mark.asyncio
    async def test_requests_are_signed(self, kalshi_config, private_key, private_pem):
        signed = kalshi_config.model_copy(update={"KALSHI_API_KEY_ID": "key-1", "KALSHI_PRIVATE_KEY": private_pem})

        def handler(request):
            assert request.headers["KALSHI-ACCESS-KEY"] == "key-1"
            timestamp = request.headers["KALSHI-ACCESS-TIMESTAMP"]
            message = f"{timestamp}GET/trade-api/v2/markets".encode("utf-8")
            private_key.public_key().verify(
                base64.b64decode(request.headers["KALSHI-ACCESS-SIGNATURE"]),
                message,
                padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.DIGEST_LENGTH),
                hashes.SHA256(),
            )
            return httpx.Response(200, json={"markets": []})

        async with kalshi(signed, handler) as client:
            assert await client.get_markets() == []


class TestHeliusClient:
    @pytest.mark.asyncio
    async def test_recent_transactions(self, config):
        def handler(request):
            assert request.url.path == "/v0/addresses/W1/transactions"
            assert request.url.params["limit"] == "1"
            assert request.url.params["api-key"] == "hk"
            return httpx.Response(200, json=[{"signature": "sig-1", "feePayer": "W1"}])

        client = HeliusClient(config.model_copy(update={"HELIUS_API_KEY": "hk"}),
                              transport=httpx.MockTransport(handler))
        try:
            assert await client.get_recent_transactions("W1") == [{"signature": "sig-1", "feePayer": "W1"}]
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_shape_is_an_upstream_error(self, config):
        client = HeliusClient(config, transport=httpx.MockTransport(
            lambda request: httpx.Response(200, json={"error": "bad key"})
        ))
        try:
            with pytest.raises(UpstreamError):
                await client.get_recent_transactions("W1")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_timeout(self, config):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        client = HeliusClient(config, transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(UpstreamTimeoutError):
                await client.get_recent_transactions("W1")
        finally:
            await client.aclose()
