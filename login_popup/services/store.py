"""
Connection to the shared key-value store.

Rate limit counters, popup nonces, authenticated sessions and second-factor
tokens all live in redis. The client returned here is thread safe, and
connections are attached at the time a command is executed, so a single
instance is created when the application starts and shared by every request.
"""

from typing import Mapping, Any

import redis
import fakeredis

import logging

logger = logging.getLogger(__name__)


def get_redis(config: Mapping[str, Any]) -> redis.Redis:
    """Get a new redis client using application configuration."""
    if config.get('REDIS_FAKE'):
        logger.debug('Using FakeRedis')
        return fakeredis.FakeStrictRedis(decode_responses=True)

    host = config.get('REDIS_HOST', 'localhost')
    port = int(config.get('REDIS_PORT', '6379'))
    db = int(config.get('REDIS_DATABASE', '0'))
    token = config.get('REDIS_TOKEN', None)
    logger.debug('New Redis connection at %s, port %s', host, port)
    return redis.Redis(host=host, port=port, db=db, password=token,
                       decode_responses=True)
