from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import stripe

from core.config import STRIPE_EVENTS_TO_SYNC
from core.errors import CredentialError, TransportError
from services.stripe.client import StripeBillingClient
from tests.factories import ts, utc


@pytest.fixture
def throttle():
    mock = MagicMock()
    mock.wait = AsyncMock()
    return mock


@pytest.fixture
def client(throttle):
    return StripeBillingClient("sk_test_123", throttle=throttle)


async def collect(client, kind, **filters):
    return [page async for page in client.iter_pages(kind, **filters)]


class TestConstruction:
    def test_missing_key_is_a_credential_error(self):
        with pytest.raises(CredentialError):
            StripeBillingClient("")

    def test_page_size_is_capped(self):
        assert StripeBillingClient("sk_test", page_size=500).page_size == 100
        assert StripeBillingClient("sk_test", page_size=0).page_size == 1


class TestPagination:
    @pytest.mark.asyncio
    async def test_follows_cursor_until_exhausted(self, client, throttle):
        responses = [
            {"data": [{"id": "cus_1"}, {"id": "cus_2"}], "has_more": True},
            {"data": [{"id": "cus_3"}], "has_more": False},
        ]
        with patch("stripe.Customer.list", side_effect=responses) as list_customers:
            pages = await collect(client, "customers")

        assert [[r["id"] for r in p.data] for p in pages] == [["cus_1", "cus_2"], ["cus_3"]]
        first, second = list_customers.call_args_list
        assert first.kwargs == {"api_key": "sk_test_123", "limit": 100}
        assert second.kwargs["starting_after"] == "cus_2"
        assert throttle.wait.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_page_ends_the_loop_even_if_has_more(self, client):
        with patch("stripe.Customer.list", return_value={"data": [], "has_more": True}) as list_customers:
            pages = await collect(client, "customers")

        assert len(pages) == 1
        assert list_customers.call_count == 1

    @pytest.mark.asyncio
    async def test_created_filter_for_customers(self, client):
        with patch("stripe.Customer.list", return_value={"data": [], "has_more": False}) as list_customers:
            await collect(client, "customers", created_gte=utc(2024, 3, 1))

        assert list_customers.call_args.kwargs["created"] == {"gte": ts(2024, 3, 1)}

    @pytest.mark.asyncio
    async def test_subscriptions_include_every_status(self, client):
        with patch("stripe.Subscription.list", return_value={"data": [], "has_more": False}) as list_subs:
            await collect(client, "subscriptions")

        kwargs = list_subs.call_args.kwargs
        assert kwargs["status"] == "all"
        assert "created" not in kwargs
        assert kwargs["expand"] == ["data.items.data.price.product"]

    @pytest.mark.asyncio
    async def test_events_are_filtered_by_type(self, client):
        with patch("stripe.Event.list", return_value={"data": [], "has_more": False}) as list_events:
            await collect(client, "events", created_gte=utc(2024, 1, 1))

        kwargs = list_events.call_args.kwargs
        assert kwargs["types"] == STRIPE_EVENTS_TO_SYNC
        assert kwargs["created"] == {"gte": ts(2024, 1, 1)}


class TestErrors:
    @pytest.mark.asyncio
    async def test_authentication_error_maps_to_credential_error(self, client):
        with patch("stripe.Customer.list", side_effect=stripe.AuthenticationError("Invalid API Key provided")):
            with pytest.raises(CredentialError, match="Invalid API Key"):
                await collect(client, "customers")

    @pytest.mark.asyncio
    async def test_connection_error_maps_to_transport_error(self, client):
        with patch("stripe.Subscription.list", side_effect=stripe.APIConnectionError("network down")):
            with pytest.raises(TransportError):
                await collect(client, "subscriptions")

    @pytest.mark.asyncio
    async def test_rate_limit_maps_to_transport_error(self, client):
        with patch("stripe.Account.retrieve", side_effect=stripe.RateLimitError("slow down")):
            with pytest.raises(TransportError):
                await client.retrieve_account()
