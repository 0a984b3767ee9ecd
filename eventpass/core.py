import os
from prometheus_client import Counter, start_http_server
import logging

logger = logging.getLogger(__name__)

METRICS_PORT = int(os.getenv('METRICS_PORT', '8001'))

AUTH_REJECTIONS = Counter(
    'eventpass_auth_rejections_total',
    'Requests rejected by the auth core, by internal error kind',
    ['kind'],
)
LOGINS = Counter(
    'eventpass_logins_total',
    'Login and registration attempts by outcome',
    ['outcome'],
)
SESSIONS_REVOKED = Counter(
    'eventpass_sessions_revoked_total',
    'Sessions removed from ledgers, by reason',
    ['reason'],
)


def init_metrics(port: int = METRICS_PORT):
    """Initialize Prometheus metrics server"""
    try:
        start_http_server(port)
        logger.info(f"Prometheus metrics server started on port {port}")
    except Exception as e:
        logger.warning(f'Prometheus start failed: {e}')


async def shutdown_connections():
    """Gracefully shutdown all connections"""
    from .models import engine

    logger.info("Shutting down connections...")
    try:
        await engine.dispose()
        logger.info("Database engine disposed")
    except Exception as e:
        logger.error(f"Error disposing database engine: {e}")
