"""
MongoDB store handle

One Database object per process, opened at startup and closed at shutdown.
Collection names are the lowercase entity names (User -> "user").
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Type

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.client_session import ClientSession
from pymongo.collection import Collection

from config import Settings
from errors import NotFoundError

logger = logging.getLogger(__name__)

USERS = "user"
COURSES = "course"
VIDEOS = "video"
ENROLLMENTS = "enrollment"
VIDEO_PROGRESS = "video_progress"
MOCK_TESTS = "mock_test"
MOCK_ATTEMPTS = "mock_attempt"
CERTIFICATES = "certificate"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def oid(id_str: Any, error: Type[NotFoundError] = NotFoundError) -> ObjectId:
    """Parse a client-supplied id; a malformed id names nothing, so it is a 404."""
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(str(id_str))
    except (InvalidId, TypeError):
        raise error()


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    for k, v in list(d.items()):
        if isinstance(v, datetime):
            d[k] = as_utc(v).isoformat()
        elif isinstance(v, ObjectId):
            d[k] = str(v)
    return d


class Database:
    """Explicitly constructed handle around a MongoClient."""

    def __init__(self, client: MongoClient, name: str, use_transactions: bool = True):
        self.client = client
        self.db = client[name]
        self.use_transactions = use_transactions

    @classmethod
    def connect(cls, settings: Settings) -> "Database":
        client = MongoClient(
            settings.DATABASE_URL,
            serverSelectionTimeoutMS=settings.DATABASE_TIMEOUT_MS,
        )
        # fail fast instead of on the first request
        client.admin.command("ping")
        logger.info("MongoDB connected (database=%s)", settings.DATABASE_NAME)
        return cls(client, settings.DATABASE_NAME, use_transactions=settings.DATABASE_TRANSACTIONS)

    def close(self) -> None:
        self.client.close()
        logger.info("MongoDB disconnected")

    def __getitem__(self, name: str) -> Collection:
        return self.db[name]

    @property
    def users(self) -> Collection:
        return self.db[USERS]

    @property
    def courses(self) -> Collection:
        return self.db[COURSES]

    @property
    def videos(self) -> Collection:
        return self.db[VIDEOS]

    @property
    def enrollments(self) -> Collection:
        return self.db[ENROLLMENTS]

    @property
    def video_progress(self) -> Collection:
        return self.db[VIDEO_PROGRESS]

    @property
    def mock_tests(self) -> Collection:
        return self.db[MOCK_TESTS]

    @property
    def mock_attempts(self) -> Collection:
        return self.db[MOCK_ATTEMPTS]

    @property
    def certificates(self) -> Collection:
        return self.db[CERTIFICATES]

    def ensure_indexes(self) -> None:
        self.users.create_index("email", unique=True)
        self.users.create_index([("created_at", DESCENDING)])

        self.courses.create_index("teacher_id")
        self.courses.create_index([("created_at", DESCENDING)])

        self.videos.create_index([("course_id", ASCENDING), ("created_at", DESCENDING)])

        self.enrollments.create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)
        self.enrollments.create_index("course_id")

        self.video_progress.create_index([("user_id", ASCENDING), ("video_id", ASCENDING)], unique=True)
        self.video_progress.create_index("video_id")

        self.mock_tests.create_index([("course_id", ASCENDING), ("scheduled_at", ASCENDING)])
        self.mock_attempts.create_index([("user_id", ASCENDING), ("test_id", ASCENDING)], unique=True)
        self.mock_attempts.create_index("test_id")

        self.certificates.create_index([("user_id", ASCENDING), ("course_id", ASCENDING)], unique=True)
        self.certificates.create_index("course_id")
        logger.info("MongoDB indexes ensured")

    @contextmanager
    def transaction(self) -> Iterator[Optional[ClientSession]]:
        """Yield a session bound to a transaction, or None when transactions are off.

        An exception inside the block aborts the transaction; nothing is committed.
        """
        if not self.use_transactions:
            yield None
            return
        with self.client.start_session() as session:
            with session.start_transaction():
                yield session
