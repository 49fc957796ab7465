"""
Tests for MarketplaceActions.
"""
import pytest

from conftest import ALICE, BOB, MARKET, NOW
from marketsync.core.codec import encode
from marketsync.core.errors import ErrorCategory
from marketsync.core.event_bus import EventBus, EventType
from marketsync.core.models import Auction, Item, MarketplaceSnapshot
from marketsync.execution.marketplace_actions import MarketplaceActions
from marketsync.monitoring.metrics_rich import SyncMetrics


def make_item(item_id=1, owner=ALICE, for_sale=True, in_auction=False, price=150_000_000):
    return Item(
        id=item_id,
        owner=owner,
        name="Item",
        description="",
        uri="",
        price_base=price,
        for_sale=for_sale,
        rarity=2,
        in_auction=in_auction,
    )


def make_auction(end_time=NOW + 600, active=True, seller=ALICE, current=200_000_000):
    return Auction(
        auction_id=4,
        item_id=1,
        seller=seller,
        start_price_base=100_000_000,
        current_price_base=current,
        highest_bidder=BOB,
        end_time=end_time,
        is_active=active,
    )


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def actions(ledger, bus):
    return MarketplaceActions(ledger, MARKET, event_bus=bus, clock=lambda: NOW)


class TestMint:
    """Mint payloads and refresh signal."""

    @pytest.mark.asyncio
    async def test_mint_encodes_text_and_signals(self, actions, ledger, bus):
        result = await actions.mint("Sword", "Sharp", "https://img/1.png", 3)

        assert result.success is True
        assert result.tx_hash
        payload = ledger.submitted[0]
        assert payload["function"].endswith("::mint_nft_to_marketplace")
        assert payload["arguments"] == [MARKET, encode("Sword"), encode("Sharp"), encode("https://img/1.png"), 3]
        minted = bus.get_history(EventType.ITEM_MINTED)
        assert len(minted) == 1
        assert minted[0].data["name"] == "Sword"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rarity", [0, 5])
    async def test_invalid_rarity_rejected(self, actions, ledger, rarity):
        result = await actions.mint("Sword", "", "https://img/1.png", rarity)

        assert result.success is False
        assert result.category is ErrorCategory.INVALID_INPUT
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_duplicate_name_abort(self, actions, ledger):
        ledger.abort("mint_nft_to_marketplace", "Move abort: EDUPLICATE_NFT_NAME")

        result = await actions.mint("Sword", "", "https://img/1.png", 1)

        assert result.success is False
        assert result.category is ErrorCategory.DUPLICATE_NAME
        assert result.title == "Duplicate NFT Name"


class TestPurchase:
    """Purchase validation."""

    @pytest.mark.asyncio
    async def test_purchase_sends_listed_price(self, actions, ledger, bus):
        result = await actions.purchase(make_item(), buyer=BOB)

        assert result.success is True
        assert ledger.submitted[0]["arguments"] == [MARKET, "1", "150000000"]
        assert len(bus.get_history(EventType.ACTION_CONFIRMED)) == 1

    @pytest.mark.asyncio
    async def test_cannot_buy_own_item(self, actions, ledger):
        result = await actions.purchase(make_item(owner="0x000a11ce"), buyer="0xA11CE")

        assert result.category is ErrorCategory.CANNOT_BUY_OWN
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_not_for_sale(self, actions):
        result = await actions.purchase(make_item(for_sale=False), buyer=BOB)
        assert result.category is ErrorCategory.NOT_FOR_SALE

    @pytest.mark.asyncio
    async def test_item_in_auction_rejected(self, actions):
        result = await actions.purchase(make_item(in_auction=True), buyer=BOB)
        assert result.category is ErrorCategory.NOT_FOR_SALE

    @pytest.mark.asyncio
    async def test_item_in_overdue_auction_rejected_with_snapshot(self, actions, ledger):
        snapshot = MarketplaceSnapshot(items=(make_item(),), auctions=(make_auction(end_time=NOW - 1),))

        result = await actions.purchase(make_item(), buyer=BOB, snapshot=snapshot)

        assert result.success is False
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_onchain_payment_abort(self, actions, ledger):
        ledger.abort("purchase_nft", "Move abort in 0xcafe::nft_marketplace: code: 401")

        result = await actions.purchase(make_item(), buyer=BOB)

        assert result.category is ErrorCategory.INSUFFICIENT_PAYMENT


class TestBidding:
    """Bid validation."""

    @pytest.mark.asyncio
    async def test_bid_in_base_units(self, actions, ledger):
        result = await actions.place_bid(make_auction(), bidder=BOB, amount="2.75")

        assert result.success is True
        assert ledger.submitted[0]["arguments"] == [MARKET, "4", "275000000"]

    @pytest.mark.asyncio
    async def test_bid_must_exceed_current_price(self, actions, ledger):
        result = await actions.place_bid(make_auction(), bidder=BOB, amount="2")

        assert result.category is ErrorCategory.BID_TOO_LOW
        assert "2" in result.message
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_ended_auction(self, actions):
        result = await actions.place_bid(make_auction(end_time=NOW), bidder=BOB, amount=3)
        assert result.category is ErrorCategory.AUCTION_ENDED

    @pytest.mark.asyncio
    async def test_inactive_auction(self, actions):
        result = await actions.place_bid(make_auction(active=False), bidder=BOB, amount=3)
        assert result.category is ErrorCategory.AUCTION_ENDED

    @pytest.mark.asyncio
    async def test_seller_cannot_bid(self, actions):
        result = await actions.place_bid(make_auction(), bidder=ALICE, amount=3)
        assert result.category is ErrorCategory.SELLER_CANNOT_BID

    @pytest.mark.asyncio
    async def test_invalid_amount(self, actions):
        result = await actions.place_bid(make_auction(), bidder=BOB, amount="lots")
        assert result.category is ErrorCategory.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_amount_beyond_u64_rejected(self, actions, ledger):
        result = await actions.place_bid(make_auction(), bidder=BOB, amount="1e20")

        assert result.success is False
        assert result.category is ErrorCategory.INVALID_INPUT
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_insufficient_funds_abort(self, actions, ledger):
        ledger.abort("place_bid", "Move abort in 0x1::coin: EINSUFFICIENT_BALANCE(0x10006)")

        result = await actions.place_bid(make_auction(), bidder=BOB, amount=3)

        assert result.category is ErrorCategory.INSUFFICIENT_FUNDS
        assert result.title == "Insufficient Balance"


class TestListingAndAuctions:
    """Listing, auction creation, finalization."""

    @pytest.mark.asyncio
    async def test_list_for_sale(self, actions, ledger):
        result = await actions.list_for_sale(3, "0.5")

        assert result.success is True
        assert ledger.submitted[0]["arguments"] == [MARKET, "3", "50000000"]

    @pytest.mark.asyncio
    async def test_zero_price_rejected(self, actions, ledger):
        result = await actions.list_for_sale(3, 0)

        assert result.category is ErrorCategory.INVALID_INPUT
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_oversized_price_rejected(self, actions, ledger):
        result = await actions.list_for_sale(3, "184467440738")

        assert result.category is ErrorCategory.INVALID_INPUT
        assert "not a valid amount" in result.message
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_create_auction(self, actions, ledger):
        result = await actions.create_auction(3, 1, 3600)

        assert result.success is True
        assert ledger.submitted[0]["arguments"] == [MARKET, "3", "100000000", "3600"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("duration", [299, 86401])
    async def test_duration_bounds(self, actions, ledger, duration):
        result = await actions.create_auction(3, 1, duration)

        assert result.category is ErrorCategory.INVALID_INPUT
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_end_auction(self, actions, ledger):
        ledger.add_auction(4, 1, end_time=NOW - 1)

        result = await actions.end_auction(4)

        assert result.success is True
        assert ledger.auctions[4][6] is False

    @pytest.mark.asyncio
    async def test_initialize(self, actions, ledger):
        result = await actions.initialize()

        assert result.success is True
        assert ledger.submitted[0]["arguments"] == []

    @pytest.mark.asyncio
    async def test_outcomes_counted(self, ledger):
        metrics = SyncMetrics()
        actions = MarketplaceActions(ledger, MARKET, metrics=metrics, clock=lambda: NOW)

        await actions.list_for_sale(3, 1)
        await actions.list_for_sale(3, 0)

        registry = metrics.get_registry()
        assert registry.get_sample_value("marketplace_actions_total", {"action": "list_for_sale", "category": "ok"}) == 1.0
        assert registry.get_sample_value(
            "marketplace_actions_total", {"action": "list_for_sale", "category": "rejected_invalid_input"}
        ) == 1.0
