import json

from portal.core.celery_config import celery_app
from portal.core.logger_factory import setup_logger
from portal.core.redis_config import get_redis_client
from portal.services.fanout import LIFECYCLE_CHANNEL

logger = setup_logger(__name__)


@celery_app.task(bind=True, ignore_result=True)
def relay_lifecycle_event(self, message: dict) -> int:
    """Re-publish a lifecycle message on Redis pub/sub for other instances.

    Each instance's ``RedisRelayListener`` delivers it by ``message["topics"]``.
    """
    client = get_redis_client()
    receivers = client.publish(LIFECYCLE_CHANNEL, json.dumps(message))
    logger.debug(f"Relayed {message.get('event')} to {receivers} receiver(s)")
    return receivers
