"""
Pytest configuration and fixtures for the detergent dashboard
"""
import pytest

from detergent_mfg import create_app
from detergent_mfg.db import get_db, seed_data


@pytest.fixture
def app(tmp_path):
    """Create Flask application backed by a throwaway sqlite file"""
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test",
            "DATABASE": str(tmp_path / "detergent.sqlite"),
        }
    )
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_client(client):
    """Test client signed in as the demo owner"""
    client.post("/demo-login")
    return client


@pytest.fixture
def query(app):
    """Run a query against the test database and return all rows"""

    def run(sql, params=()):
        with app.app_context():
            return get_db().execute(sql, params).fetchall()

    return run


@pytest.fixture
def seeded(app):
    """Insert the sample reference data used by the forms"""
    with app.app_context():
        seed_data()
    return app


def login(client, email="owner@detergent.com", password="password123"):
    """Helper function to sign in a user"""
    return client.post("/login", data={"email": email, "password": password}, follow_redirects=True)
