"""
Seed a development database with demo accounts and courses.

Safe to run more than once: existing accounts and courses (matched by email
and title) are left alone.

    ENV_FILE=.env python seed.py
"""
import logging

from catalog import CatalogStore
from config import Settings, get_settings
from database import Database, utcnow
from main import configure_logging
from policy import Caller
from progress import ProgressEngine
from schemas import CourseCreate, Role, User, VideoCreate
from users import UserService

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "password123"

DEMO_USERS = [
    {"name": "Tara Teacher", "email": "teacher@example.com", "role": Role.TEACHER},
    {"name": "Sam Student", "email": "student@example.com", "role": Role.USER},
]

DEMO_COURSES = [
    {
        "title": "Python Foundations",
        "description": "Variables, control flow and functions from scratch.",
        "category": "Programming",
        "price": 0,
        "videos": ["Installing Python", "Your first script", "Functions"],
    },
    {
        "title": "Statistics for Data Analysis",
        "description": "Descriptive statistics, distributions and sampling.",
        "category": "Data Science",
        "price": 49,
        "videos": ["Mean, median and mode", "Variance", "The normal distribution", "Sampling"],
    },
]


def ensure_user(db: Database, users: UserService, entry: dict) -> dict:
    existing = db.users.find_one({"email": entry["email"]})
    if existing:
        return existing
    now = utcnow()
    doc = User(
        name=entry["name"],
        email=entry["email"],
        password_hash=users.hash_password(DEMO_PASSWORD),
        role=entry["role"],
        created_at=now,
        updated_at=now,
    ).model_dump()
    doc["_id"] = db.users.insert_one(doc).inserted_id
    logger.info("Created %s account %s", doc["role"], doc["email"])
    return doc


def seed(db: Database, settings: Settings) -> None:
    db.ensure_indexes()
    users = UserService(db, settings)
    users.ensure_admin(settings)
    catalog = CatalogStore(db)
    progress = ProgressEngine(db, catalog)

    teacher = Caller.from_user(ensure_user(db, users, DEMO_USERS[0]))
    student = Caller.from_user(ensure_user(db, users, DEMO_USERS[1]))

    first_course = None
    for entry in DEMO_COURSES:
        course = db.courses.find_one({"title": entry["title"]})
        if not course:
            payload = CourseCreate(**{k: v for k, v in entry.items() if k != "videos"})
            course = catalog.create_course(teacher, payload)
            for title in entry["videos"]:
                slug = title.lower().replace(" ", "-").replace(",", "")
                catalog.create_video(teacher, VideoCreate(
                    title=title,
                    link=f"https://videos.example.com/{slug}",
                    course_id=str(course["_id"]),
                ))
            logger.info("Created course %r with %d videos", entry["title"], len(entry["videos"]))
        first_course = first_course or course

    if first_course and not db.enrollments.find_one({"user_id": student.id, "course_id": str(first_course["_id"])}):
        progress.enroll(student, str(first_course["_id"]))


def main() -> None:
    settings = get_settings()
    configure_logging(settings)
    db = Database.connect(settings)
    try:
        seed(db, settings)
    finally:
        db.close()
    logger.info("Seed complete")


if __name__ == "__main__":
    main()
