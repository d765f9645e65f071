import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import Database
from main import create_app

PASSWORD = "secret1"
ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture
def settings():
    return Settings(
        DATABASE_NAME="learnhub_test",
        DATABASE_TRANSACTIONS=False,
        SECRET_KEY="test-access-secret",
        REFRESH_SECRET_KEY="test-refresh-secret",
        BCRYPT_ROUNDS=4,
        ADMIN_EMAIL=ADMIN_EMAIL,
        ADMIN_PASSWORD=ADMIN_PASSWORD,
    )


@pytest.fixture
def db(settings):
    # mongomock has no sessions, so transactions stay off
    return Database(mongomock.MongoClient(), settings.DATABASE_NAME, use_transactions=False)


@pytest.fixture
def client(settings, db):
    app = create_app(settings, db)
    with TestClient(app) as c:
        yield c


class Api:
    """Small helper around the test client for signing users up and in."""

    def __init__(self, client: TestClient):
        self.client = client

    def signup(self, email: str, role: str = None, name: str = "Test User", password: str = PASSWORD) -> dict:
        body = {"name": name, "email": email, "password": password}
        if role:
            body["role"] = role
        res = self.client.post("/users/register", json=body)
        assert res.status_code == 201, res.text
        return res.json()["user"]

    def login(self, email: str, password: str = PASSWORD) -> dict:
        res = self.client.post("/users/login", json={"email": email, "password": password})
        assert res.status_code == 200, res.text
        return res.json()

    def headers(self, email: str, password: str = PASSWORD) -> dict:
        return {"Authorization": f"Bearer {self.login(email, password)['token']}"}

    def account(self, email: str, role: str = None, name: str = "Test User"):
        """Register and log in; returns (user, auth headers)."""
        user = self.signup(email, role=role, name=name)
        return user, self.headers(email)

    def course(self, headers: dict, title: str = "Course", videos: int = 0, **fields) -> dict:
        res = self.client.post("/courses", json={"title": title, **fields}, headers=headers)
        assert res.status_code == 201, res.text
        course = res.json()
        course["video_ids"] = [self.video(headers, course["id"], f"{title} part {i + 1}")["id"] for i in range(videos)]
        return course

    def video(self, headers: dict, course_id: str, title: str = "Video") -> dict:
        res = self.client.post(
            "/videos",
            json={"title": title, "link": "https://videos.example.com/v", "courseId": course_id},
            headers=headers,
        )
        assert res.status_code == 201, res.text
        return res.json()


@pytest.fixture
def api(client):
    return Api(client)


@pytest.fixture
def admin_headers(api):
    return api.headers(ADMIN_EMAIL, ADMIN_PASSWORD)
