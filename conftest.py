import os

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['REDIS_URL'] = ''
os.environ['JWT_JWKS_URL'] = ''
os.environ['JWT_ISSUER'] = ''
os.environ['JWT_AUDIENCE'] = ''

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from booking.auth import jwt_handler  # noqa: E402
from booking.database import Base, get_db  # noqa: E402
from booking.main import app  # noqa: E402
from booking.models.consultant import Consultant  # noqa: E402
from booking.rate_limiter import FixedWindowRateLimiter, get_rate_limiter  # noqa: E402


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def rate_limiter():
    return FixedWindowRateLimiter(limit=100, window_seconds=60)


@pytest.fixture
def client(db_session, rate_limiter):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    token = jwt_handler.create_access_token(subject='client-123', extra_claims={'email': 'client@example.com'})
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def consultant(db_session):
    record = Consultant(name='Dana Reyes', email='dana@studio.example')
    db_session.add(record)
    db_session.commit()
    db_session.refresh(record)
    return record
