import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event

from courtside.core.config import Settings
from courtside.core.redis import AvailabilityCache
from courtside.db.session import Database
from courtside.main import create_app
from courtside.services.bookings import BookingService
from courtside.services.webhooks import WebhookReconciler
from tests.factories import JWT_SECRET, KEY_SECRET, WEBHOOK_SECRET
from tests.fakes import FakeGateway, RecordingNotifier


@pytest.fixture(scope="session")
def log_dir(tmp_path_factory):
    return str(tmp_path_factory.mktemp("logs"))


@pytest.fixture
def settings(log_dir):
    return Settings(
        database_url="sqlite://",
        razorpay_key_id="rzp_test_key",
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        jwt_secret=JWT_SECRET,
        sweep_interval_seconds=0,
        log_dir=log_dir,
    )


@pytest.fixture
def database(settings):
    database = Database(settings.database_url)
    database.create_all()
    yield database
    database.close()


@pytest.fixture
def db(database):
    session = database.session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(db, settings, gateway, notifier):
    return BookingService(db, settings, gateway, notifier=notifier)


@pytest.fixture
def reconciler(db, settings, gateway, notifier):
    return WebhookReconciler(db, settings, gateway, notifier=notifier)


@pytest.fixture
def client(settings, database, gateway, notifier):
    app = create_app(
        settings,
        database=database,
        gateway=gateway,
        cache=AvailabilityCache(None),
        notifier=notifier,
        run_sweeper=False,
    )
    return TestClient(app)


@pytest.fixture
def file_database(settings, tmp_path):
    """File-backed SQLite where every transaction takes the write lock up front."""
    database = Database(f"sqlite:///{tmp_path / 'race.db'}")

    @event.listens_for(database.engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(database.engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    database.create_all()
    yield database
    database.close()
