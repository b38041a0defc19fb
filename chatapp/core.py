import asyncio
import logging

from prometheus_client import Counter, Gauge, start_http_server

from .config import settings

logger = logging.getLogger(__name__)

REDIS = None

MESSAGES_SENT = Counter('chat_messages_sent_total', 'Messages accepted by the store')
CHANGES_PUBLISHED = Counter('chat_change_events_total', 'Change events published', ['table', 'type'])
OPEN_SUBSCRIPTIONS = Gauge('chat_open_subscriptions', 'Change feed subscriptions currently held open')
POLICY_DENIALS = Counter('chat_policy_denials_total', 'Writes rejected by row-level policy', ['table', 'action'])


def init_metrics(port: int = None):
    """Initialize Prometheus metrics server"""
    port = settings.metrics_port if port is None else port
    if not port:
        logger.info("Metrics server disabled")
        return
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except Exception as e:
        logger.warning(f'Prometheus start failed: {e}')


async def redis_startup():
    """Connect to Redis for cross-instance change fan-out; stays None when not configured"""
    global REDIS

    redis_url = settings.redis_url
    if not redis_url:
        logger.info("REDIS_URL not set, change events stay in-process")
        REDIS = None
        return

    import redis.asyncio as redis

    max_retries = 3
    retry_delay = 3  # seconds

    for attempt in range(max_retries):
        try:
            logger.info(f"Attempting to connect to Redis: {redis_url} (attempt {attempt + 1}/{max_retries})")

            REDIS = redis.from_url(
                redis_url,
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True,
                health_check_interval=30,
                socket_connect_timeout=5,
            )

            # Test the connection
            await REDIS.ping()

            logger.info("Redis connected successfully")
            break

        except Exception as e:
            logger.warning(f'Redis startup attempt {attempt + 1} failed: {e}')
            if REDIS:
                try:
                    await REDIS.aclose()
                except Exception as close_error:
                    logger.debug(f'Redis close after failed attempt raised: {close_error}')
                REDIS = None

            if attempt < max_retries - 1:
                logger.info(f"Retrying Redis connection in {retry_delay} seconds...")
                await asyncio.sleep(retry_delay)
            else:
                logger.error("Failed to connect to Redis after all retries")


async def shutdown_connections():
    """Gracefully shutdown all connections"""
    global REDIS
    logger.info("Shutting down connections...")

    if REDIS:
        try:
            await REDIS.aclose()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")
        REDIS = None
