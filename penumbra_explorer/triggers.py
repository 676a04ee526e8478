"""Database notification triggers and the polling loops that feed the pub/sub channels."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from .pubsub import PubSub

log = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 1.0

_CREATE_BLOCK_NOTIFY = """
    CREATE OR REPLACE FUNCTION notify_block_update()
    RETURNS TRIGGER AS $$
    BEGIN
        PERFORM pg_notify('explorer_block_update', NEW.height::text);
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
"""

_CREATE_TX_NOTIFY = """
    CREATE OR REPLACE FUNCTION notify_transaction_update()
    RETURNS TRIGGER AS $$
    BEGIN
        PERFORM pg_notify('explorer_tx_update', NEW.block_height::text);
        PERFORM pg_notify('explorer_tx_count_update', (SELECT COUNT(*)::text FROM explorer_transactions));
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql;
"""

_DROP_BLOCK_TRIGGER = "DROP TRIGGER IF EXISTS block_update_trigger ON explorer_block_details"
_DROP_TX_TRIGGER = "DROP TRIGGER IF EXISTS transaction_update_trigger ON explorer_transactions"

_CREATE_BLOCK_TRIGGER = """
    CREATE TRIGGER block_update_trigger
    AFTER INSERT OR UPDATE ON explorer_block_details
    FOR EACH ROW EXECUTE FUNCTION notify_block_update();
"""

_CREATE_TX_TRIGGER = """
    CREATE TRIGGER transaction_update_trigger
    AFTER INSERT OR UPDATE ON explorer_transactions
    FOR EACH ROW EXECUTE FUNCTION notify_transaction_update();
"""


async def start(pubsub: PubSub, pool: Any) -> None:
    """Install the notification triggers, then poll for changes forever."""
    log.info("Starting real-time subscription triggers")
    try:
        await setup_notification_triggers(pool)
    except Exception as exc:
        log.error("Failed to set up database notification triggers: %s", exc)
        log.info("Falling back to polling mechanism only")
    else:
        log.info("Database notification triggers set up successfully")

    await fallback_polling(pubsub, pool, POLL_INTERVAL_SECONDS)


async def setup_notification_triggers(pool: Any) -> None:
    """Create the notify functions and the row triggers that call them."""
    await pool.execute(_CREATE_BLOCK_NOTIFY)
    await pool.execute(_CREATE_TX_NOTIFY)

    for statement in (_DROP_BLOCK_TRIGGER, _DROP_TX_TRIGGER):
        try:
            await pool.execute(statement)
        except Exception as exc:
            log.debug("Ignoring failure to drop trigger: %s", exc)

    await pool.execute(_CREATE_BLOCK_TRIGGER)
    await pool.execute(_CREATE_TX_TRIGGER)
    log.info("Successfully set up database notification triggers")


async def fallback_polling(pubsub: PubSub, pool: Any, interval: float) -> None:
    """Run the three polling loops concurrently."""
    log.info("Starting polling mechanism")
    await asyncio.gather(
        poll_blocks(pubsub, pool, interval),
        poll_transactions(pubsub, pool, interval),
        poll_transaction_count(pubsub, pool, interval),
    )


async def _poll(
    fetch: Callable[[], Awaitable[Optional[int]]],
    publish: Callable[[int], None],
    is_new: Callable[[Optional[int], int], bool],
    interval: float,
    what: str,
) -> None:
    last: Optional[int] = None
    while True:
        try:
            value = await fetch()
        except Exception as exc:
            log.error("Error fetching %s: %s", what, exc)
        else:
            if value is not None and is_new(last, value):
                log.debug("Polling: new %s %s", what, value)
                publish(value)
                last = value
        await asyncio.sleep(interval)


async def poll_blocks(pubsub: PubSub, pool: Any, interval: float) -> None:
    """Publish the latest block height whenever it grows."""
    await _poll(
        lambda: get_latest_block_height(pool),
        pubsub.publish_block,
        lambda last, value: last is None or last < value,
        interval,
        "latest block",
    )


async def poll_transactions(pubsub: PubSub, pool: Any, interval: float) -> None:
    """Publish the block height of the latest transaction whenever it grows."""
    await _poll(
        lambda: get_latest_transaction_height(pool),
        pubsub.publish_transaction,
        lambda last, value: last is None or last < value,
        interval,
        "latest transaction",
    )


async def poll_transaction_count(pubsub: PubSub, pool: Any, interval: float) -> None:
    """Publish the transaction count whenever it changes."""
    await _poll(
        lambda: get_transaction_count(pool),
        pubsub.publish_transaction_count,
        lambda last, value: last is None or last != value,
        interval,
        "transaction count",
    )


async def get_latest_block_height(pool: Any) -> Optional[int]:
    """Return the highest indexed block height, or None if there are no blocks."""
    row = await pool.fetch_optional(
        "SELECT height FROM explorer_block_details ORDER BY height DESC LIMIT 1"
    )
    return None if row is None else row[0]


async def get_latest_transaction_height(pool: Any) -> Optional[int]:
    """Return the block height of the most recent transaction, if any."""
    row = await pool.fetch_optional(
        "SELECT block_height FROM explorer_transactions ORDER BY timestamp DESC LIMIT 1"
    )
    return None if row is None else row[0]


async def get_transaction_count(pool: Any) -> int:
    """Return the number of indexed transactions."""
    row = await pool.fetch_one("SELECT COUNT(*) FROM explorer_transactions")
    return row[0]