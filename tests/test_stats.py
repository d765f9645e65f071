from datetime import date, datetime

import pytest

from errors import AuthorizationError
from policy import Caller
from schemas import Role
from stats import AdminStats, clamp_window, window_bounds

ADMIN = Caller(id="admin", role=Role.ADMIN)


@pytest.fixture
def stats(db):
    return AdminStats(db)


@pytest.mark.parametrize("raw,expected", [
    (0, 1),
    ("0", 1),
    (500, 180),
    ("500", 180),
    ("7", 7),
    ("7.9", 7),
    ("-3", 1),
    (None, 30),
    ("", 30),
    ("abc", 30),
    ("nan", 30),
    ("inf", 30),
])
def test_clamp_window(raw, expected):
    assert clamp_window(raw) == expected


def test_window_bounds_cover_whole_days():
    start, end = window_bounds(3, today=date(2024, 3, 10))
    assert start == datetime(2024, 3, 8)
    assert end == datetime(2024, 3, 11)


def test_daily_series_counts_inside_the_window(stats, db):
    db.users.insert_many([
        {"email": "a@example.com", "created_at": datetime(2024, 3, 7, 23, 59)},
        {"email": "b@example.com", "created_at": datetime(2024, 3, 8, 0, 0)},
        {"email": "c@example.com", "created_at": datetime(2024, 3, 10, 9, 30)},
        {"email": "d@example.com", "created_at": datetime(2024, 3, 10, 18, 0)},
        {"email": "e@example.com", "created_at": datetime(2024, 3, 11, 0, 0)},
    ])
    series = stats.get_daily_series("users", 3, today=date(2024, 3, 10))
    assert series == [
        {"date": "2024-03-08", "value": 1},
        {"date": "2024-03-10", "value": 2},
    ]


def test_category_breakdown(stats, db):
    db.courses.insert_many([
        {"title": "One", "category": "Web"},
        {"title": "Two", "category": "Data"},
        {"title": "Three", "category": ""},
        {"title": "Four", "category": "Web"},
        {"title": "Five", "category": "Data"},
    ])
    assert stats.get_category_breakdown() == [
        {"category": "Web", "count": 2},
        {"category": "Data", "count": 2},
        {"category": "Uncategorized", "count": 1},
    ]


def test_category_breakdown_is_capped(stats, db):
    db.courses.insert_many([{"title": f"C{i}", "category": f"Cat {i}"} for i in range(15)])
    assert len(stats.get_category_breakdown()) == 12


def test_top_courses_ties_keep_store_order(stats, db):
    ids = db.courses.insert_many([
        {"title": "A", "category": "x"},
        {"title": "B", "category": "x"},
        {"title": "C", "category": "x"},
    ]).inserted_ids
    a, b, c = (str(i) for i in ids)
    db.videos.insert_many([{"course_id": cid} for cid in (a, b, b, b, c)])
    db.enrollments.insert_many([{"user_id": "u1", "course_id": c}, {"user_id": "u2", "course_id": c}])

    top = stats.get_top_courses_by_video_count()
    assert [row["title"] for row in top] == ["B", "A", "C"]
    assert top[2] == {"id": c, "title": "C", "videoCount": 1, "enrollmentCount": 2}


def test_dashboard_is_admin_only(stats):
    with pytest.raises(AuthorizationError):
        stats.dashboard(Caller(id="t", role=Role.TEACHER))


def test_dashboard_shape(stats, db):
    db.courses.insert_one({"title": "Solo", "category": "Misc", "created_at": datetime(2024, 3, 9, 12)})
    result = stats.dashboard(ADMIN, "2", today=date(2024, 3, 10))
    assert result["windowDays"] == 2
    assert result["totals"] == {"totalUsers": 0, "totalCourses": 1, "totalVideos": 0, "totalEnrollments": 0}
    assert result["byCategory"] == [{"category": "Misc", "count": 1}]
    assert result["series"]["courses"] == [{"date": "2024-03-09", "value": 1}]
    assert set(result["series"]) == {"users", "courses", "videos", "enrollments"}


def test_stats_endpoint_clamps_window(client, api, admin_headers):
    res = client.get("/admin/stats", params={"windowDays": 0}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["windowDays"] == 1
    assert res.json()["totals"]["totalUsers"] == 1

    res = client.get("/admin/stats", params={"windowDays": 500}, headers=admin_headers)
    assert res.json()["windowDays"] == 180
    res = client.get("/admin/stats", params={"windowDays": "soon"}, headers=admin_headers)
    assert res.json()["windowDays"] == 30

    _, teacher_headers = api.account("t@example.com", role="TEACHER")
    assert client.get("/admin/stats", headers=teacher_headers).status_code == 403
    assert client.get("/admin/stats").status_code == 401
