from datetime import datetime, timezone

import pytest

from penumbra_explorer.scalars import DateTime
from penumbra_explorer.types import (
    AssetId,
    BlockFilter,
    BlocksSelector,
    BlockUpdate,
    CollectionLimit,
    Event,
    NotYetSupportedAction,
    RangeDirection,
    Stats,
    TransactionCountUpdate,
    TransactionFilter,
    TransactionsSelector,
    TransactionUpdate,
)


def test_blocks_selector_latest():
    selector = BlocksSelector.from_dict({"latest": {"limit": 5}})
    assert selector.latest.limit == 5
    assert selector.range is None


def test_blocks_selector_range():
    selector = BlocksSelector.from_dict({"range": {"from": 1, "to": 9}})
    assert (selector.range.from_, selector.range.to) == (1, 9)
    assert selector.latest is None


def test_blocks_selector_empty():
    selector = BlocksSelector.from_dict({})
    assert selector == BlocksSelector()


def test_blocks_selector_requires_limit():
    with pytest.raises(ValueError):
        BlocksSelector.from_dict({"latest": {}})


@pytest.mark.parametrize("bad", ["5", True, 1.5])
def test_int_fields_reject_other_types(bad):
    with pytest.raises(TypeError):
        BlocksSelector.from_dict({"latest": {"limit": bad}})


def test_int_fields_are_32_bit():
    with pytest.raises(ValueError):
        BlockFilter.from_dict({"height": 2**31})


def test_non_mapping_input():
    with pytest.raises(TypeError):
        CollectionLimit.from_dict([1, 2])


def test_transactions_selector_range():
    selector = TransactionsSelector.from_dict(
        {"range": {"fromTxHash": "0xAB", "direction": "PREVIOUS", "limit": 3}}
    )
    assert selector.range.from_tx_hash == "0xAB"
    assert selector.range.direction is RangeDirection.PREVIOUS
    assert selector.range.limit == 3


def test_transactions_selector_latest():
    selector = TransactionsSelector.from_dict({"latest": {"limit": 4}})
    assert selector.latest.limit == 4
    assert selector.range is None


def test_transactions_selector_bad_direction():
    with pytest.raises(ValueError):
        TransactionsSelector.from_dict(
            {"range": {"fromTxHash": "00", "direction": "SIDEWAYS", "limit": 1}}
        )


def test_transactions_selector_requires_hash():
    with pytest.raises(ValueError):
        TransactionsSelector.from_dict({"range": {"direction": "NEXT", "limit": 1}})


def test_collection_limit():
    assert CollectionLimit.from_dict({}) == CollectionLimit(None, None)
    limit = CollectionLimit.from_dict({"length": 20, "offset": 40})
    assert (limit.length, limit.offset) == (20, 40)


def test_filters():
    assert BlockFilter.from_dict({"height": 7}).height == 7
    assert BlockFilter.from_dict({}).height is None
    assert TransactionFilter.from_dict({"hash": "abc"}).hash == "abc"
    with pytest.raises(TypeError):
        TransactionFilter.from_dict({"hash": 12})


def test_range_direction_values():
    assert RangeDirection("NEXT") is RangeDirection.NEXT
    assert RangeDirection("PREVIOUS") is RangeDirection.PREVIOUS


def test_asset_id_to_dict():
    asset = AssetId("upenumbra", "passet1", "inner-bytes")
    data = asset.to_dict()
    assert data["altBaseDenom"] == "upenumbra"
    assert data["altBech32M"] == "passet1"
    assert data["inner"] == "inner-bytes"


def test_event_to_dict():
    assert Event(type_="tx", value="{}").to_dict() == {"type": "tx", "value": "{}"}


def test_stats_to_dict():
    assert Stats(total_transactions_count=12).to_dict() == {"totalTransactionsCount": 12}


def test_block_update_to_dict():
    created = DateTime(datetime(2024, 1, 1, tzinfo=timezone.utc))
    data = BlockUpdate(height=3, created_at=created, transactions_count=2).to_dict()
    assert data == {
        "height": 3,
        "createdAt": created.to_value(),
        "transactionsCount": 2,
    }


def test_transaction_updates_to_dict():
    assert TransactionUpdate(id=5, hash="AB", raw="cmF3").to_dict() == {
        "id": 5,
        "hash": "AB",
        "raw": "cmF3",
    }
    assert TransactionCountUpdate(count=8).to_dict() == {"count": 8}


def test_not_yet_supported_action_to_dict():
    action = NotYetSupportedAction(debug="Transaction action not fully implemented yet")
    assert action.to_dict()["debug"] == "Transaction action not fully implemented yet"
    assert action.to_dict()["__typename"] == "NotYetSupportedAction"