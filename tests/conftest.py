"""
Pytest configuration and fixtures.

FakeLedger stands in for LedgerQueryClient: it answers the marketplace view
functions from in-memory item/auction tables and records every call so
tests can count fetches.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from marketsync.core.codec import encode_hex
from marketsync.core.errors import LedgerQueryError, TransactionError
from marketsync.core.models import ZERO_ADDRESS

MARKET = "0xcafe"
ALICE = "0xa11ce"
BOB = "0xb0b"

NOW = 1_700_000_000


class FakeLedger:
    def __init__(self) -> None:
        self.initialized = True
        self.items: Dict[int, List[Any]] = {}
        self.auctions: Dict[int, List[Any]] = {}
        self.calls: List[Tuple[str, List[Any]]] = []
        # function name or (function, id) -> exception to raise
        self.failures: Dict[Any, Exception] = {}
        self.submitted: List[Dict[str, Any]] = []
        self.submit_errors: Dict[str, Exception] = {}
        self.wallet = object()

    @property
    def can_write(self) -> bool:
        return self.wallet is not None

    # ------------------------------------------------------------------
    # Table setup
    # ------------------------------------------------------------------

    def add_item(
        self,
        item_id: int,
        owner: str = ALICE,
        name: Optional[str] = None,
        price: int = 100_000_000,
        for_sale: bool = True,
        rarity: int = 1,
    ) -> None:
        name = name or f"Item {item_id}"
        self.items[item_id] = [
            str(item_id),
            owner,
            encode_hex(name),
            encode_hex(f"{name} description"),
            encode_hex(f"https://img.example/{item_id}.png"),
            str(price),
            for_sale,
            rarity,
        ]

    def add_auction(
        self,
        auction_id: int,
        item_id: int,
        end_time: int,
        seller: str = ALICE,
        start_price: int = 100_000_000,
        current_price: Optional[int] = None,
        bidder: str = ZERO_ADDRESS,
        active: bool = True,
    ) -> None:
        self.auctions[auction_id] = [
            str(item_id),
            seller,
            str(start_price),
            str(start_price if current_price is None else current_price),
            bidder,
            str(end_time),
            active,
        ]

    def close_auction(self, auction_id: int) -> None:
        self.auctions[auction_id][6] = False

    # ------------------------------------------------------------------
    # LedgerQueryClient surface
    # ------------------------------------------------------------------

    def count(self, function: str) -> int:
        return sum(1 for fn, _ in self.calls if fn == function)

    def _maybe_fail(self, function: str, key: Any = None) -> None:
        exc = self.failures.get((function, key)) or self.failures.get(function)
        if exc is not None:
            raise exc

    async def call_view(self, function: str, args, type_arguments=None) -> List[Any]:
        args = list(args)
        self.calls.append((function, args))
        key = int(args[1]) if len(args) > 1 and str(args[1]).isdigit() else None
        self._maybe_fail(function, key)

        if function == "is_marketplace_initialized":
            return [self.initialized]
        if function == "get_all_active_auctions":
            return [[str(aid) for aid, a in self.auctions.items() if a[6]]]
        if function == "get_auctions_by_seller":
            return [[str(aid) for aid, a in self.auctions.items() if a[1] == args[1]]]
        if function == "get_all_nfts_for_owner":
            return [[str(iid) for iid, i in self.items.items() if i[1] == args[1]]]
        if function == "get_auction_details":
            if key not in self.auctions:
                raise LedgerQueryError(function, "auction not found")
            return list(self.auctions[key])
        if function == "get_nft_details":
            if key not in self.items:
                raise LedgerQueryError(function, "nft not found")
            return list(self.items[key])
        raise LedgerQueryError(function, "unknown view function")

    async def read_resource(self, address: str, resource_type: str) -> Dict[str, Any]:
        self.calls.append((f"resource:{resource_type}", [address]))
        self._maybe_fail(f"resource:{resource_type}")
        fields = ("id", "owner", "name", "description", "uri", "price", "for_sale", "rarity")
        return {
            "type": f"{MARKET}::nft_marketplace::{resource_type}",
            "data": {"nfts": [dict(zip(fields, row)) for row in self.items.values()]},
        }

    def entry_payload(self, function: str, arguments) -> Dict[str, Any]:
        return {
            "type": "entry_function_payload",
            "function": f"{MARKET}::nft_marketplace::{function}",
            "type_arguments": [],
            "arguments": list(arguments),
        }

    async def submit_and_await(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.submitted.append(payload)
        function = payload["function"].rsplit("::", 1)[-1]
        exc = self.submit_errors.get(function)
        if exc is not None:
            raise exc
        if function == "end_auction":
            self.close_auction(int(payload["arguments"][1]))
        return {"hash": f"0x{len(self.submitted):04x}", "success": True, "type": "user_transaction"}

    def abort(self, function: str, vm_status: str) -> None:
        self.submit_errors[function] = TransactionError(
            f"transaction failed: {vm_status}", vm_status=vm_status, tx_hash="0xdead"
        )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def now() -> int:
    return NOW
