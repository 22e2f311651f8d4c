from urllib.parse import parse_qs, urlparse

from werkzeug.security import generate_password_hash

from conftest import login
from detergent_mfg import create_app
from detergent_mfg.db import get_db


def test_login_page_loads(client):
    response = client.get("/login")
    assert response.status_code == 200
    assert b"Sign In" in response.data
    assert b"Try Demo" in response.data
    assert b"Reset Demo" in response.data


def test_signup_mode_shows_create_account_form(client):
    response = client.get("/login?mode=signup")
    assert b"Create Account" in response.data
    assert b'name="role"' in response.data


def test_pages_require_login(client):
    for path in ["/", "/dashboard", "/raw-materials", "/machinery", "/trucks",
                 "/b2b-sales", "/b2c-sales", "/partners", "/finances"]:
        response = client.get(path)
        assert response.status_code == 302, path
        assert "/login" in response.headers["Location"]


def test_auth_status_without_session(client):
    response = client.get("/auth/status")
    assert response.status_code == 200
    payload = response.get_json()
    assert payload["session"] == "None"
    assert payload["user"] == "None"
    assert payload["timestamp"]


def test_demo_login_creates_owner_and_signs_in(client, query):
    response = client.post("/demo-login")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/dashboard")

    users = query("SELECT email, name, role FROM users")
    assert len(users) == 1
    assert users[0]["email"] == "owner@detergent.com"
    assert users[0]["name"] == "Business Owner"
    assert users[0]["role"] == "owner"

    status = client.get("/auth/status").get_json()
    assert status["session"] == "Active"
    assert status["user"] == "owner@detergent.com"


def test_demo_login_is_repeatable(client, query):
    client.post("/demo-login")
    client.post("/logout")
    response = client.post("/demo-login", follow_redirects=True)
    assert b"Demo login successful!" in response.data
    assert len(query("SELECT id FROM users")) == 1


def test_demo_login_repairs_existing_demo_user(app, client, query):
    with app.app_context():
        db = get_db()
        db.execute(
            "INSERT INTO users (email, name, role, password_hash, is_active) VALUES (?, ?, ?, ?, 0)",
            ("owner@detergent.com", "Old", "staff", generate_password_hash("something-else")),
        )
        db.commit()

    response = client.post("/demo-login", follow_redirects=True)
    assert b"Demo user setup and login successful!" in response.data

    user = query("SELECT name, role, is_active FROM users WHERE email = ?", ("owner@detergent.com",))[0]
    assert user["name"] == "Business Owner"
    assert user["role"] == "owner"
    assert user["is_active"] == 1


def test_demo_reset_recreates_user(client, query):
    client.post("/demo-login")
    first_id = query("SELECT id FROM users")[0]["id"]
    client.post("/logout")

    response = client.post("/demo-reset", follow_redirects=True)
    assert b"Demo login successful after reset!" in response.data

    users = query("SELECT id FROM users")
    assert len(users) == 1
    assert users[0]["id"] != first_id


def test_signup_then_login(client, query):
    response = client.post(
        "/signup",
        data={"name": "Asha", "email": "Asha@Example.com", "password": "secret1", "role": "owner"},
    )
    assert response.status_code == 302
    location = urlparse(response.headers["Location"])
    assert location.path == "/login"
    assert parse_qs(location.query)["email"] == ["asha@example.com"]

    user = query("SELECT name, role FROM users WHERE email = ?", ("asha@example.com",))[0]
    assert user["name"] == "Asha"
    assert user["role"] == "owner"

    response = login(client, "asha@example.com", "secret1")
    assert b"Signed in successfully!" in response.data
    assert b"Asha" in response.data


def test_signup_defaults_to_staff(client, query):
    client.post("/signup", data={"name": "Ravi", "email": "ravi@example.com", "password": "secret1"})
    assert query("SELECT role FROM users WHERE email = ?", ("ravi@example.com",))[0]["role"] == "staff"


def test_signup_rejects_short_password(client, query):
    response = client.post(
        "/signup",
        data={"name": "Ravi", "email": "ravi@example.com", "password": "123", "role": "staff"},
        follow_redirects=True,
    )
    assert b"Password must be at least 6 characters." in response.data
    assert query("SELECT id FROM users") == []


def test_signup_rejects_duplicate_email(client, query):
    data = {"name": "Ravi", "email": "ravi@example.com", "password": "secret1", "role": "staff"}
    client.post("/signup", data=data)
    response = client.post("/signup", data=data, follow_redirects=True)
    assert b"User already registered" in response.data
    assert len(query("SELECT id FROM users")) == 1


def test_signup_rejects_unknown_role(client, query):
    client.post(
        "/signup",
        data={"name": "Ravi", "email": "ravi@example.com", "password": "secret1", "role": "admin"},
    )
    assert query("SELECT id FROM users") == []


def test_login_with_wrong_password(client):
    client.post("/demo-reset")
    client.post("/logout")
    response = login(client, password="wrong-password")
    assert response.status_code == 200
    assert b"Invalid email or password" in response.data


def test_logout_ends_session(auth_client):
    assert auth_client.get("/dashboard").status_code == 200
    response = auth_client.post("/logout")
    assert response.status_code == 302
    assert auth_client.get("/dashboard").status_code == 302


def test_signed_in_user_is_redirected_from_login(auth_client):
    response = auth_client.get("/login")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/dashboard")


def test_mixed_case_demo_email_can_sign_in(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test",
            "DATABASE": str(tmp_path / "detergent.sqlite"),
            "DEMO_EMAIL": " Owner@Detergent.COM ",
        }
    )
    assert app.config["DEMO_EMAIL"] == "owner@detergent.com"

    client = app.test_client()
    client.post("/demo-login")
    client.post("/logout")

    response = login(client, "Owner@Detergent.COM", "password123")
    assert b"Signed in successfully!" in response.data
    assert client.get("/auth/status").get_json()["user"] == "owner@detergent.com"

    with app.app_context():
        emails = [row["email"] for row in get_db().execute("SELECT email FROM users").fetchall()]
    assert emails == ["owner@detergent.com"]
