"""
Admin dashboard statistics

Read-only aggregates computed on request. Daily series use UTC calendar days
and only contain days with at least one creation (no zero-fill).
"""
from collections import Counter
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING

from catalog import CatalogStore
from database import COURSES, ENROLLMENTS, USERS, VIDEOS, Database, as_utc
from policy import Action, Caller, authorize

DEFAULT_WINDOW_DAYS = 30
MIN_WINDOW_DAYS = 1
MAX_WINDOW_DAYS = 180
CATEGORY_LIMIT = 12
UNCATEGORIZED = "Uncategorized"

SERIES = {"users": USERS, "courses": COURSES, "videos": VIDEOS, "enrollments": ENROLLMENTS}


def clamp_window(raw: Any) -> int:
    """Silently coerce a windowDays value into [1, 180]; junk means the default."""
    if raw is None or isinstance(raw, bool):
        return DEFAULT_WINDOW_DAYS
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return DEFAULT_WINDOW_DAYS
    if value != value or value in (float("inf"), float("-inf")):
        return DEFAULT_WINDOW_DAYS
    return max(MIN_WINDOW_DAYS, min(MAX_WINDOW_DAYS, int(value)))


def window_bounds(window_days: int, today: Optional[date] = None):
    """[start, end) as naive UTC datetimes covering the last `window_days` days."""
    today = today or datetime.now(timezone.utc).date()
    start = datetime.combine(today - timedelta(days=window_days - 1), time.min)
    end = datetime.combine(today + timedelta(days=1), time.min)
    return start, end


class AdminStats:
    def __init__(self, db: Database):
        self.db = db

    def get_totals(self) -> Dict[str, int]:
        return {
            "totalUsers": self.db.users.count_documents({}),
            "totalCourses": self.db.courses.count_documents({}),
            "totalVideos": self.db.videos.count_documents({}),
            "totalEnrollments": self.db.enrollments.count_documents({}),
        }

    def _courses(self) -> List[dict]:
        return list(self.db.courses.find({}, {"title": 1, "category": 1}).sort("_id", ASCENDING))

    def get_category_breakdown(self, courses: Optional[List[dict]] = None) -> List[Dict[str, Any]]:
        courses = self._courses() if courses is None else courses
        counts: Counter = Counter()
        for c in courses:
            counts[(c.get("category") or "").strip() or UNCATEGORIZED] += 1
        # Counter keeps first-seen order, so the stable sort breaks ties by retrieval order
        ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
        return [{"category": k, "count": v} for k, v in ranked[:CATEGORY_LIMIT]]

    def get_top_courses_by_video_count(self, n: int = 5, courses: Optional[List[dict]] = None) -> List[Dict[str, Any]]:
        courses = self._courses() if courses is None else courses
        videos = CatalogStore.count_by_course(self.db.videos)
        enrollments = CatalogStore.count_by_course(self.db.enrollments)
        rows = [
            {
                "id": str(c["_id"]),
                "title": c.get("title"),
                "videoCount": videos.get(str(c["_id"]), 0),
                "enrollmentCount": enrollments.get(str(c["_id"]), 0),
            }
            for c in courses
        ]
        rows.sort(key=lambda r: r["videoCount"], reverse=True)
        return rows[:n]

    def get_daily_series(self, entity: str, window_days: Any = DEFAULT_WINDOW_DAYS,
                         today: Optional[date] = None) -> List[Dict[str, Any]]:
        collection = self.db[SERIES.get(entity, entity)]
        start, end = window_bounds(clamp_window(window_days), today)
        days: Counter = Counter()
        for doc in collection.find({"created_at": {"$gte": start, "$lt": end}}, {"created_at": 1}):
            days[as_utc(doc["created_at"]).date().isoformat()] += 1
        return [{"date": d, "value": days[d]} for d in sorted(days)]

    def dashboard(self, caller: Caller, window_days: Any = None, today: Optional[date] = None) -> Dict[str, Any]:
        authorize(caller, Action.STATS_VIEW)
        window = clamp_window(window_days)
        courses = self._courses()
        return {
            "windowDays": window,
            "totals": self.get_totals(),
            "byCategory": self.get_category_breakdown(courses),
            "topCoursesByVideos": self.get_top_courses_by_video_count(5, courses),
            "series": {name: self.get_daily_series(name, window, today) for name in SERIES},
        }
