"""
Catalog store: courses and videos.

Videos carry no owner of their own; every video mutation derives the owner
through resolve_video_owner().
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument

from database import Database, oid, serialize_doc, utcnow
from errors import (
    AuthorizationError,
    CourseNotFoundError,
    UserNotFoundError,
    ValidationError,
    VideoNotFoundError,
)
from policy import Action, Caller, Resource, authorize, ownership_filter
from schemas import Course, CourseCreate, CourseUpdate, Role, Video, VideoCreate, VideoUpdate

logger = logging.getLogger(__name__)

COURSE_SORTS = {
    "price_asc": [("price", ASCENDING), ("_id", ASCENDING)],
    "price_desc": [("price", DESCENDING), ("_id", DESCENDING)],
    "newest": [("created_at", DESCENDING), ("_id", DESCENDING)],
}
NEWEST = COURSE_SORTS["newest"]
MAX_PAGE_SIZE = 100


@dataclass
class CourseFilter:
    search: str = ""
    category: str = ""
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    sort: str = "newest"


def sort_from_order(order: str) -> str:
    """Map the public ?order=asc|desc parameter onto a course sort."""
    order = (order or "").strip().lower()
    if order == "asc":
        return "price_asc"
    if order == "desc":
        return "price_desc"
    return "newest"


def clamp_page(page: Optional[int], limit: Optional[int], default_limit: int) -> Tuple[int, int]:
    page = max(page or 1, 1)
    limit = max(limit or default_limit, 1)
    return page, min(limit, MAX_PAGE_SIZE)


def pagination(total: int, page: int, limit: int) -> dict:
    return {"total": total, "page": page, "limit": limit, "pages": -(-total // limit)}


def _icontains(text: str) -> dict:
    return {"$regex": re.escape(text), "$options": "i"}


def _object_ids(ids: Iterable[str]) -> List[ObjectId]:
    out = []
    for i in ids:
        try:
            out.append(ObjectId(i))
        except (InvalidId, TypeError):
            continue
    return out


def teacher_summary(user: Optional[dict]) -> Optional[dict]:
    if not user:
        return None
    return {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email"), "role": user.get("role")}


class CatalogStore:
    def __init__(self, db: Database):
        self.db = db

    # ----------------------
    # Course reads
    # ----------------------
    @staticmethod
    def course_query(f: CourseFilter) -> dict:
        clauses = []
        if f.search:
            pattern = _icontains(f.search)
            clauses.append({"$or": [{"title": pattern}, {"description": pattern}, {"category": pattern}]})
        if f.category:
            clauses.append({"category": {"$regex": f"^{re.escape(f.category)}$", "$options": "i"}})
        if f.min_price is not None:
            clauses.append({"price": {"$gte": f.min_price}})
        if f.max_price is not None:
            clauses.append({"price": {"$lte": f.max_price}})
        return {"$and": clauses} if clauses else {}

    def list_courses(self, f: CourseFilter, page: int = 1, page_size: int = 6) -> Tuple[List[dict], int]:
        q = self.course_query(f)
        sort = COURSE_SORTS.get(f.sort, NEWEST)
        total = self.db.courses.count_documents(q)
        cursor = self.db.courses.find(q).sort(sort).skip((page - 1) * page_size).limit(page_size)
        return self.with_details(list(cursor)), total

    def with_details(self, courses: List[dict]) -> List[dict]:
        """Serialize courses with their teacher summary and video/enrollment counts."""
        if not courses:
            return []
        course_ids = [str(c["_id"]) for c in courses]
        teachers = {
            str(u["_id"]): u
            for u in self.db.users.find(
                {"_id": {"$in": _object_ids({c.get("teacher_id") for c in courses})}},
                {"password_hash": 0},
            )
        }
        video_counts = self.count_by_course(self.db.videos, course_ids)
        enrollment_counts = self.count_by_course(self.db.enrollments, course_ids)
        out = []
        for c in courses:
            cid = str(c["_id"])
            item = serialize_doc(c)
            item["teacher"] = teacher_summary(teachers.get(c.get("teacher_id")))
            item["video_count"] = video_counts.get(cid, 0)
            item["enrollment_count"] = enrollment_counts.get(cid, 0)
            out.append(item)
        return out

    @staticmethod
    def count_by_course(collection, course_ids: Optional[List[str]] = None) -> Dict[str, int]:
        pipeline = []
        if course_ids is not None:
            pipeline.append({"$match": {"course_id": {"$in": course_ids}}})
        pipeline.append({"$group": {"_id": "$course_id", "count": {"$sum": 1}}})
        return {row["_id"]: row["count"] for row in collection.aggregate(pipeline)}

    def get_course(self, course_id: str) -> dict:
        course = self.db.courses.find_one({"_id": oid(course_id, CourseNotFoundError)})
        if not course:
            raise CourseNotFoundError()
        return course

    def course_detail(self, course_id: str) -> dict:
        course = self.get_course(course_id)
        item = self.with_details([course])[0]
        videos = self.db.videos.find({"course_id": str(course["_id"])}).sort(NEWEST)
        item["videos"] = [serialize_doc(v) for v in videos]
        return item

    def list_owned(self, caller: Caller) -> List[dict]:
        authorize(caller, Action.COURSE_LIST_OWNED)
        courses = self.db.courses.find(ownership_filter(caller, "teacher_id")).sort(NEWEST)
        return self.with_details(list(courses))

    # ----------------------
    # Course writes
    # ----------------------
    def _owner_for_course(self, owner_id: str) -> dict:
        owner = self.db.users.find_one({"_id": oid(owner_id, UserNotFoundError)})
        if not owner:
            raise UserNotFoundError("Teacher not found")
        if owner.get("role") not in (Role.TEACHER.value, Role.ADMIN.value):
            raise ValidationError("teacherId must belong to a TEACHER/ADMIN")
        return owner

    def create_course(self, caller: Caller, payload: CourseCreate) -> dict:
        authorize(caller, Action.COURSE_CREATE)
        if caller.role == Role.TEACHER:
            owner_id = caller.id
        else:
            owner_id = payload.teacher_id or caller.id
        owner = self._owner_for_course(owner_id)
        now = utcnow()
        doc = Course(
            title=payload.title.strip(),
            description=payload.description,
            category=payload.category.strip(),
            price=payload.price,
            teacher_id=str(owner["_id"]),
            created_at=now,
            updated_at=now,
        ).model_dump()
        res = self.db.courses.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    def update_course(self, caller: Caller, course_id: str, payload: CourseUpdate) -> dict:
        course = self.get_course(course_id)
        authorize(caller, Action.COURSE_UPDATE, Resource(owner_id=course.get("teacher_id")))
        data = payload.model_dump(exclude_none=True)
        new_owner = data.pop("teacher_id", None)
        if new_owner is not None and new_owner != course.get("teacher_id"):
            if not caller.is_admin:
                raise AuthorizationError("Only an admin can transfer a course")
            data["teacher_id"] = str(self._owner_for_course(new_owner)["_id"])
        if "title" in data:
            data["title"] = data["title"].strip()
        if "category" in data:
            data["category"] = data["category"].strip()
        if not data:
            return course
        data["updated_at"] = utcnow()
        updated = self.db.courses.find_one_and_update(
            {"_id": course["_id"]}, {"$set": data}, return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise CourseNotFoundError()
        return updated

    def delete_course(self, caller: Caller, course_id: str) -> Dict[str, int]:
        """Delete a course and everything that only exists through it, atomically."""
        course = self.get_course(course_id)
        authorize(caller, Action.COURSE_DELETE, Resource(owner_id=course.get("teacher_id")))
        cid = str(course["_id"])
        with self.db.transaction() as session:
            video_ids = [str(v["_id"]) for v in self.db.videos.find({"course_id": cid}, {"_id": 1}, session=session)]
            test_ids = [str(t["_id"]) for t in self.db.mock_tests.find({"course_id": cid}, {"_id": 1}, session=session)]
            removed = {
                "video_progress": self.db.video_progress.delete_many(
                    {"video_id": {"$in": video_ids}}, session=session).deleted_count,
                "videos": self.db.videos.delete_many({"course_id": cid}, session=session).deleted_count,
                "enrollments": self.db.enrollments.delete_many({"course_id": cid}, session=session).deleted_count,
                "mock_attempts": self.db.mock_attempts.delete_many(
                    {"test_id": {"$in": test_ids}}, session=session).deleted_count,
                "mock_tests": self.db.mock_tests.delete_many({"course_id": cid}, session=session).deleted_count,
                "certificates": self.db.certificates.delete_many({"course_id": cid}, session=session).deleted_count,
                "courses": self.db.courses.delete_one({"_id": course["_id"]}, session=session).deleted_count,
            }
        logger.info("Deleted course %s by %s: %s", cid, caller.id, removed)
        return removed

    # ----------------------
    # Videos
    # ----------------------
    def list_videos(self, course_id: str = "", search: str = "", page: int = 1,
                    page_size: int = 10) -> Tuple[List[dict], int]:
        clauses = []
        if course_id:
            clauses.append({"course_id": course_id})
        if search:
            clauses.append({"title": _icontains(search)})
        q = {"$and": clauses} if clauses else {}
        total = self.db.videos.count_documents(q)
        cursor = self.db.videos.find(q).sort(NEWEST).skip((page - 1) * page_size).limit(page_size)
        return list(cursor), total

    def get_video(self, video_id: str) -> dict:
        video = self.db.videos.find_one({"_id": oid(video_id, VideoNotFoundError)})
        if not video:
            raise VideoNotFoundError()
        return video

    def resolve_video_owner(self, video: dict) -> Optional[str]:
        """The owner of a video is the teacher of its parent course."""
        course = self.db.courses.find_one({"_id": oid(video.get("course_id"), CourseNotFoundError)}, {"teacher_id": 1})
        if not course:
            raise CourseNotFoundError()
        return course.get("teacher_id")

    def create_video(self, caller: Caller, payload: VideoCreate) -> dict:
        course = self.get_course(payload.course_id)
        authorize(caller, Action.VIDEO_CREATE, Resource(owner_id=course.get("teacher_id")))
        now = utcnow()
        doc = Video(
            title=payload.title.strip(),
            link=payload.link.strip(),
            img=payload.img or "",
            description=payload.description,
            views=payload.views,
            course_id=str(course["_id"]),
            created_at=now,
            updated_at=now,
        ).model_dump()
        res = self.db.videos.insert_one(doc)
        doc["_id"] = res.inserted_id
        return doc

    def update_video(self, caller: Caller, video_id: str, payload: VideoUpdate) -> dict:
        video = self.get_video(video_id)
        authorize(caller, Action.VIDEO_UPDATE, Resource(owner_id=self.resolve_video_owner(video)))
        data = payload.model_dump(exclude_none=True)
        if not data:
            return video
        data["updated_at"] = utcnow()
        updated = self.db.videos.find_one_and_update(
            {"_id": video["_id"]}, {"$set": data}, return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise VideoNotFoundError()
        return updated

    def delete_video(self, caller: Caller, video_id: str) -> None:
        video = self.get_video(video_id)
        authorize(caller, Action.VIDEO_DELETE, Resource(owner_id=self.resolve_video_owner(video)))
        vid = str(video["_id"])
        with self.db.transaction() as session:
            self.db.video_progress.delete_many({"video_id": vid}, session=session)
            self.db.videos.delete_one({"_id": video["_id"]}, session=session)
        logger.info("Deleted video %s by %s", vid, caller.id)
