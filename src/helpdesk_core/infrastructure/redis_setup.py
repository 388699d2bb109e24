"""Redis connection factory for the shared thread cache and outbox.

Supports a standalone Redis URL (development, single node) and Redis
Sentinel (HA deployments). Connections are verified at startup with the
standard startup retry policy.
"""

import logging
import os
from typing import List, Optional, Tuple

from redis.asyncio import Redis
from redis.asyncio.sentinel import Sentinel

from helpdesk_core.utils import service_startup_retry

logger = logging.getLogger(__name__)


def _parse_sentinel_hosts(hosts_str: str) -> List[Tuple[str, int]]:
    """Parse comma-separated sentinel host:port string.

    Example:
        >>> _parse_sentinel_hosts("sentinel1:26379,sentinel2")
        [('sentinel1', 26379), ('sentinel2', 26379)]
    """
    sentinels = []

    for host_port in hosts_str.split(","):
        host_port = host_port.strip()
        if not host_port:
            continue

        if ":" in host_port:
            host, port_str = host_port.rsplit(":", 1)
            sentinels.append((host, int(port_str)))
        else:
            sentinels.append((host_port, 26379))

    return sentinels


@service_startup_retry
async def _verify_redis_connection(client: Redis) -> None:
    await client.ping()
    logger.info("Redis connection verified")


async def get_redis_client(
    url: Optional[str] = None,
    sentinel_hosts: Optional[str] = None,
    master_set: Optional[str] = None,
    password: Optional[str] = None,
    db: Optional[int] = None,
) -> Redis:
    """Create and verify an async Redis client.

    Environment Variables:
        HELPDESK_REDIS_URL: redis:// URL for standalone mode (default: redis://localhost:6379/0)
        HELPDESK_REDIS_SENTINEL_HOSTS: "host:port,host:port" enables Sentinel mode
        HELPDESK_REDIS_MASTER_SET: Sentinel master name (default: "mymaster")
        HELPDESK_REDIS_PASSWORD: Password for Sentinel mode
        HELPDESK_REDIS_DB: Database index for Sentinel mode (default: 0)

    Raises:
        ValueError: If Sentinel hosts are configured but none parse
        redis.exceptions.ConnectionError: If the connection fails after retries
    """
    sentinel_hosts_str = sentinel_hosts or os.getenv("HELPDESK_REDIS_SENTINEL_HOSTS", "")

    if sentinel_hosts_str:
        sentinels = _parse_sentinel_hosts(sentinel_hosts_str)
        if not sentinels:
            raise ValueError(f"No valid sentinel hosts found in: {sentinel_hosts_str}")

        master_name = master_set or os.getenv("HELPDESK_REDIS_MASTER_SET", "mymaster")
        password = password or os.getenv("HELPDESK_REDIS_PASSWORD")
        db_index = db if db is not None else int(os.getenv("HELPDESK_REDIS_DB", "0"))

        logger.info(f"Connecting to Redis Sentinel: master={master_name}, sentinels={sentinels}")
        sentinel_client = Sentinel(
            sentinels,
            sentinel_kwargs={"password": password} if password else {},
        )
        client = sentinel_client.master_for(
            master_name, db=db_index, password=password, decode_responses=True
        )
    else:
        redis_url = url or os.getenv("HELPDESK_REDIS_URL", "redis://localhost:6379/0")
        logger.info(f"Connecting to standalone Redis: {redis_url}")
        client = Redis.from_url(redis_url, decode_responses=True, socket_connect_timeout=5)

    await _verify_redis_connection(client)
    return client
