import logging

import redis
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking.cache import cache
from booking.database import check_database, get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=['health'])


def database_check(db: Session) -> dict:
    try:
        check_database(db)
    except SQLAlchemyError as exc:
        logger.warning('Database health check failed: %s', exc)
        return {'status': 'unhealthy', 'error': exc.__class__.__name__}
    return {'status': 'healthy'}


def cache_check() -> dict:
    if not cache.enabled:
        return {'status': 'disabled'}
    try:
        cache.ping()
    except redis.RedisError as exc:
        logger.warning('Cache health check failed: %s', exc)
        return {'status': 'unhealthy', 'error': exc.__class__.__name__}
    return {'status': 'healthy'}


@router.get('/health')
def health(db: Session = Depends(get_db)):
    checks = {
        'database': database_check(db),
        'cache': cache_check(),
    }
    healthy = all(check['status'] != 'unhealthy' for check in checks.values())

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={'status': 'healthy' if healthy else 'unhealthy', 'checks': checks},
    )
