"""
Enrollment and progress engine.

Watched state lives in one video_progress row per (user, video); course
completion is always derived from the course's current video set.
"""
import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional

from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError

from catalog import CatalogStore
from database import Database, as_utc, oid, utcnow
from errors import AlreadyEnrolledError, CourseNotFoundError
from policy import Action, Caller, authorize
from schemas import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)

CREATION_ORDER = [("created_at", ASCENDING), ("_id", ASCENDING)]


def completion_rate(watched: int, total: int) -> float:
    """Percentage of watched videos, one decimal rounded half up; a course without videos is 0.0."""
    if total <= 0:
        return 0.0
    rate = Decimal(watched * 100) / Decimal(total)
    return float(rate.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def status_for(rate: float, total: int) -> str:
    if total > 0 and rate >= 100:
        return EnrollmentStatus.COMPLETED.value
    return EnrollmentStatus.ACTIVE.value


class ProgressEngine:
    def __init__(self, db: Database, catalog: CatalogStore):
        self.db = db
        self.catalog = catalog

    def _course_video_ids(self, course_id: str, session=None) -> List[str]:
        return [str(v["_id"]) for v in self.db.videos.find({"course_id": course_id}, {"_id": 1}, session=session)]

    def _watched_ids(self, user_id: str, video_ids: List[str], session=None) -> set:
        if not video_ids:
            return set()
        rows = self.db.video_progress.find(
            {"user_id": user_id, "video_id": {"$in": video_ids}, "watched": True},
            {"video_id": 1},
            session=session,
        )
        return {r["video_id"] for r in rows}

    def _rate_for(self, user_id: str, course_id: str, session=None):
        video_ids = self._course_video_ids(course_id, session=session)
        watched = self._watched_ids(user_id, video_ids, session=session)
        return completion_rate(len(watched), len(video_ids)), len(video_ids)

    # ----------------------
    # Enrollment
    # ----------------------
    def enroll(self, caller: Caller, course_id: str) -> dict:
        authorize(caller, Action.ENROLL)
        with self.db.transaction() as session:
            course = self.db.courses.find_one({"_id": oid(course_id, CourseNotFoundError)}, session=session)
            if not course:
                raise CourseNotFoundError()
            cid = str(course["_id"])
            # videos watched before enrolling still count
            rate, total = self._rate_for(caller.id, cid, session=session)
            doc = Enrollment(
                user_id=caller.id,
                course_id=cid,
                progress=rate,
                status=status_for(rate, total),
                created_at=utcnow(),
            ).model_dump()
            try:
                res = self.db.enrollments.insert_one(doc, session=session)
            except DuplicateKeyError:
                # 409 Conflict; clients written against the old API expected 400 here
                raise AlreadyEnrolledError()
            doc["_id"] = res.inserted_id
        logger.info("User %s enrolled in course %s", caller.id, cid)
        return doc

    def enrolled_courses(self, caller: Caller) -> List[dict]:
        authorize(caller, Action.VIEW_OWN_PROGRESS)
        course_ids = [e["course_id"] for e in self.db.enrollments.find({"user_id": caller.id}).sort(CREATION_ORDER)]
        if not course_ids:
            return []
        by_id = {str(c["_id"]): c for c in self.db.courses.find({"_id": {"$in": [oid(c) for c in course_ids]}})}
        ordered = [by_id[c] for c in course_ids if c in by_id]
        return self.catalog.with_details(ordered)

    def progress_overview(self, caller: Caller) -> List[dict]:
        """Every enrollment of the caller with its completion computed live."""
        authorize(caller, Action.VIEW_OWN_PROGRESS)
        enrollments = list(self.db.enrollments.find({"user_id": caller.id}).sort(CREATION_ORDER))
        if not enrollments:
            return []
        course_ids = [e["course_id"] for e in enrollments]
        videos_by_course: Dict[str, List[str]] = defaultdict(list)
        for v in self.db.videos.find({"course_id": {"$in": course_ids}}, {"course_id": 1}):
            videos_by_course[v["course_id"]].append(str(v["_id"]))
        all_ids = [vid for ids in videos_by_course.values() for vid in ids]
        watched = self._watched_ids(caller.id, all_ids)
        out = []
        for e in enrollments:
            ids = videos_by_course.get(e["course_id"], [])
            done = sum(1 for vid in ids if vid in watched)
            rate = completion_rate(done, len(ids))
            out.append({
                "id": str(e["_id"]),
                "courseId": e["course_id"],
                "progress": rate,
                "status": e.get("status", EnrollmentStatus.ACTIVE.value),
            })
        return out

    # ----------------------
    # Watch tracking
    # ----------------------
    def mark_watched(self, caller: Caller, video_id: str) -> dict:
        authorize(caller, Action.MARK_WATCHED)
        video = self.catalog.get_video(video_id)
        vid = str(video["_id"])
        now = utcnow()
        query = {"user_id": caller.id, "video_id": vid}
        update = {"$set": {"watched": True, "updated_at": now}}
        try:
            progress = self.db.video_progress.find_one_and_update(
                query, update, upsert=True, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            # a concurrent upsert created the row first; now it matches
            progress = self.db.video_progress.find_one_and_update(
                query, update, return_document=ReturnDocument.AFTER
            )
        self._sync_enrollment(caller.id, video["course_id"])
        return progress

    def _sync_enrollment(self, user_id: str, course_id: str) -> None:
        enrollment = self.db.enrollments.find_one({"user_id": user_id, "course_id": course_id})
        if not enrollment or enrollment.get("status") == EnrollmentStatus.DROPPED.value:
            return
        rate, total = self._rate_for(user_id, course_id)
        self.db.enrollments.update_one(
            {"_id": enrollment["_id"]},
            {"$set": {"progress": rate, "status": status_for(rate, total)}},
        )

    def video_progress(self, caller: Caller, video_id: str) -> dict:
        authorize(caller, Action.VIEW_OWN_PROGRESS)
        video = self.catalog.get_video(video_id)
        vid = str(video["_id"])
        row: Optional[dict] = self.db.video_progress.find_one({"user_id": caller.id, "video_id": vid})
        return {
            "videoId": vid,
            "watched": bool(row and row.get("watched")),
            "updatedAt": as_utc(row["updated_at"]).isoformat() if row and row.get("updated_at") else None,
        }

    def course_progress(self, caller: Caller, course_id: str) -> dict:
        authorize(caller, Action.VIEW_OWN_PROGRESS)
        course = self.catalog.get_course(course_id)
        cid = str(course["_id"])
        videos = list(self.db.videos.find({"course_id": cid}, {"title": 1, "created_at": 1}).sort(CREATION_ORDER))
        video_ids = [str(v["_id"]) for v in videos]
        # only rows for this course's videos; the student's other history is ignored
        watched = self._watched_ids(caller.id, video_ids)
        rate = completion_rate(len(watched), len(video_ids))
        return {
            "courseId": cid,
            "completionRate": f"{rate:.1f}",
            "progress": [
                {"id": vid, "title": v.get("title"), "watched": vid in watched}
                for vid, v in zip(video_ids, videos)
            ],
        }
