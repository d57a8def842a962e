"""
Cache key schema.

Keys are built unprefixed; the store prepends the configured namespace.

| Key                                        | Contents                     | TTL    |
|--------------------------------------------|------------------------------|--------|
| price:{item_id}                            | current, base, updated       | none   |
| pressure:{item_id}                         | demand, supply, net, ...     | 15 min |
| trades_10min:{item_id}:{yyyyMMddHHmm}      | buy, sell, weighted_*        | 1 h    |
| online_players                             | set of player ids            | none   |
| session:{player_id}                        | login_time, total_play_time  | 24 h   |
| config:{key}                               | cached server setting        | 1 h    |
"""

from datetime import datetime, timezone
from typing import Optional, Tuple

from ..core.constants import BUCKET_MINUTES, BUCKET_TIMESTAMP_FORMAT


PRICE = "price:{item_id}"
PRESSURE = "pressure:{item_id}"
TRADE_BUCKET = "trades_10min:{item_id}:{stamp}"
TRADE_BUCKET_PATTERN = "trades_10min:*"
ONLINE_PLAYERS = "online_players"
SESSION = "session:{player_id}"
CONFIG = "config:{key}"
UPDATE_STATS = "update_stats:{day}"
LAST_PRICE_UPDATE = "last_price_update"
SNAPSHOT = "snapshot:{stamp}"


def bucket_start(ts: datetime) -> datetime:
    """Floor a timestamp to its 10-minute bucket boundary, in UTC."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    minute = (ts.minute // BUCKET_MINUTES) * BUCKET_MINUTES
    return ts.replace(minute=minute, second=0, microsecond=0)


def price_key(item_id: str) -> str:
    return PRICE.format(item_id=item_id)


def pressure_key(item_id: str) -> str:
    return PRESSURE.format(item_id=item_id)


def trade_bucket_key(item_id: str, ts: datetime) -> str:
    stamp = bucket_start(ts).strftime(BUCKET_TIMESTAMP_FORMAT)
    return TRADE_BUCKET.format(item_id=item_id, stamp=stamp)


def parse_trade_bucket_key(key: str) -> Optional[Tuple[str, datetime]]:
    """
    Split a trade bucket key into item id and bucket start.

    Item ids may themselves contain colons (e.g. "minecraft:wheat"), so the
    timestamp is taken from the last segment.

    Returns:
        (item_id, bucket_start) or None if the key is not a bucket key
    """
    prefix = "trades_10min:"
    if not key.startswith(prefix):
        return None
    item_id, sep, stamp = key[len(prefix):].rpartition(":")
    if not sep or not item_id:
        return None
    try:
        start = datetime.strptime(stamp, BUCKET_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    return item_id, start


def session_key(player_id: str) -> str:
    return SESSION.format(player_id=player_id)


def config_key(key: str) -> str:
    return CONFIG.format(key=key)


def update_stats_key(ts: datetime) -> str:
    return UPDATE_STATS.format(day=ts.astimezone(timezone.utc).strftime("%Y%m%d"))


def snapshot_key(ts: datetime) -> str:
    return SNAPSHOT.format(stamp=ts.astimezone(timezone.utc).strftime("%Y%m%dT%H%M"))
