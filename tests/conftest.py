import os
# Ensure the app factory picks the Testing config & SQLite memory DB
os.environ.setdefault("APP_ENV", "testing")
os.environ.setdefault("TEST_DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("PORTONE_API_SECRET", "test-portone-secret")

import random

import pytest
from subscription_sync import create_app
from subscription_sync.billing import init_billing
from subscription_sync.billing.periods import PeriodCalculator
from subscription_sync.extensions import db

from fakes import FakeGateway, FixedClock

@pytest.fixture(scope="session")
def app():
    app = create_app(
        config_overrides={
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "RATELIMIT_ENABLED": False,
        },
        gateway=FakeGateway(),
        calculator=PeriodCalculator(clock=FixedClock(), rng=random.Random(0)),
    )
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()

@pytest.fixture()
def client(app):
    return app.test_client()

@pytest.fixture()
def clock():
    return FixedClock()

@pytest.fixture()
def calculator(clock):
    return PeriodCalculator(clock=clock, rng=random.Random(42))

@pytest.fixture()
def gateway(app, calculator):
    # Fresh fake per test, wired into the app's dispatcher
    fake = FakeGateway()
    init_billing(app, db, gateway=fake, calculator=calculator)
    return fake

@pytest.fixture(autouse=True)
def _db_clean(app):
    # Clean BEFORE each test
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
    yield
    # And AFTER each test (keeps state hermetic even if a test fails mid-transaction)
    with app.app_context():
        db.session.rollback()
        for tbl in reversed(db.metadata.sorted_tables):
            db.session.execute(tbl.delete())
        db.session.commit()
