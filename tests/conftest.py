import os

os.environ['STRIPE_API_KEY'] = 'sk_test_dummy'
os.environ['DATABASE_URL'] = 'sqlite://'
for name in ('MEGAOTT_API_URL', 'MEGAOTT_API_KEY', 'RESEND_API_KEY', 'NOWPAYMENTS_IPN_SECRET'):
    os.environ.pop(name, None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from steadystream_svc.app import app
from steadystream_svc.models.base import Base, get_db

engine = create_engine(
    'sqlite://',
    connect_args={'check_same_thread': False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
