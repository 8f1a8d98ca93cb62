import pytest

import raid_reservation as rr

ADMIN_KEY = "operator-secret"
ADMIN_PATH = "ops_test"
DAY = "2026-10-18"


@pytest.fixture
def config(tmp_path):
    return rr.Config(
        admin_key=ADMIN_KEY,
        admin_path=ADMIN_PATH,
        db_path=str(tmp_path / "test.db"),
        secret_key="test-secret",
    )


@pytest.fixture
def app(config):
    app = rr.create_app(config)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_client(client):
    resp = client.post(f"/{ADMIN_PATH}/login", data={"key": ADMIN_KEY})
    assert resp.status_code == 302
    return client


@pytest.fixture
def db(tmp_path):
    conn = rr.connect(str(tmp_path / "store.db"))
    rr.init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def app_db(app, config):
    """A second connection onto the app's database file."""
    conn = rr.connect(config.db_path)
    yield conn
    conn.close()


@pytest.fixture
def today(config):
    return rr.local_today(config.tz_offset_hours)


def submit(db, raid="dirige", grade="normal", nickname="cheese", group="guild",
           dealers=1, buffers=0, day=DAY):
    return rr.submit_application(db, raid, grade, nickname, group, dealers, buffers, day)
