import pytest


@pytest.fixture
def teacher_x(api):
    return api.account("x@example.com", role="TEACHER", name="Xavier")


@pytest.fixture
def teacher_y(api):
    return api.account("y@example.com", role="TEACHER", name="Yara")


def test_only_owner_or_admin_can_change_a_course(client, api, teacher_x, teacher_y, admin_headers):
    _, x_headers = teacher_x
    _, y_headers = teacher_y
    course = api.course(x_headers, "K8s 101", price=0)

    assert client.put(f"/courses/{course['id']}", json={"title": "Hijacked"}, headers=y_headers).status_code == 403
    assert client.delete(f"/courses/{course['id']}", headers=y_headers).status_code == 403

    res = client.put(f"/courses/{course['id']}", json={"title": "K8s 102"}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["title"] == "K8s 102"

    res = client.put(f"/courses/{course['id']}", json={"price": 10}, headers=x_headers)
    assert res.status_code == 200
    assert res.json()["price"] == 10


def test_students_cannot_create_courses(client, api):
    _, headers = api.account("s@example.com")
    assert client.post("/courses", json={"title": "Nope"}, headers=headers).status_code == 403
    assert client.post("/courses", json={"title": "Nope"}).status_code == 401


def test_teacher_always_owns_what_they_create(client, api, teacher_x, teacher_y):
    x, x_headers = teacher_x
    y, _ = teacher_y
    res = client.post("/courses", json={"title": "Mine", "teacherId": y["id"]}, headers=x_headers)
    assert res.status_code == 201
    assert res.json()["teacher_id"] == x["id"]


def test_admin_assigns_and_transfers_ownership(client, api, teacher_x, teacher_y, admin_headers):
    x, x_headers = teacher_x
    y, _ = teacher_y
    student = api.signup("s@example.com")

    res = client.post("/courses", json={"title": "Assigned", "teacherId": x["id"]}, headers=admin_headers)
    assert res.status_code == 201
    course_id = res.json()["id"]
    assert res.json()["teacher_id"] == x["id"]

    res = client.post("/courses", json={"title": "Bad", "teacherId": student["id"]}, headers=admin_headers)
    assert res.status_code == 400

    res = client.put(f"/courses/{course_id}", json={"teacherId": y["id"]}, headers=x_headers)
    assert res.status_code == 403
    res = client.put(f"/courses/{course_id}", json={"teacherId": y["id"]}, headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["teacher_id"] == y["id"]


def test_list_courses_filters_sorts_and_paginates(client, api, teacher_x):
    _, headers = teacher_x
    api.course(headers, "Intro to Python", category="Programming", price=0)
    api.course(headers, "Advanced Python", category="Programming", price=80)
    api.course(headers, "Statistics", category="Data", price=40, description="Learn python for stats")
    api.course(headers, "Design Basics", category="Design", price=20)

    res = client.get("/courses", params={"category": "programming"})
    assert {c["title"] for c in res.json()["data"]} == {"Intro to Python", "Advanced Python"}

    res = client.get("/courses", params={"search": "PYTHON"})
    assert res.json()["pagination"]["total"] == 3

    res = client.get("/courses", params={"minPrice": 20, "maxPrice": 40, "order": "asc"})
    assert [c["price"] for c in res.json()["data"]] == [20, 40]

    res = client.get("/courses", params={"order": "desc"})
    assert [c["price"] for c in res.json()["data"]] == [80, 40, 20, 0]

    res = client.get("/courses", params={"page": 2, "limit": 3})
    body = res.json()
    assert len(body["data"]) == 1
    assert body["pagination"] == {"total": 4, "page": 2, "limit": 3, "pages": 2}

    res = client.get("/courses")
    assert res.json()["data"][0]["title"] == "Design Basics"
    assert res.json()["data"][0]["teacher"]["name"] == "Xavier"


def test_course_detail_includes_videos_and_counts(client, api, teacher_x):
    _, headers = teacher_x
    course = api.course(headers, "Detailed", videos=2)
    res = client.get(f"/courses/{course['id']}")
    assert res.status_code == 200
    body = res.json()
    assert body["video_count"] == 2
    assert body["enrollment_count"] == 0
    assert {v["id"] for v in body["videos"]} == set(course["video_ids"])


@pytest.mark.parametrize("course_id", ["not-an-id", "000000000000000000000000"])
def test_unknown_course_is_not_found(client, course_id):
    assert client.get(f"/courses/{course_id}").status_code == 404


def test_delete_course_cascades(client, db, api, teacher_x, admin_headers):
    _, headers = teacher_x
    course = api.course(headers, "Doomed", videos=3)
    keep = api.course(headers, "Survivor", videos=1)
    cid = course["id"]

    students = [api.account(f"s{i}@example.com") for i in range(2)]
    for _, s_headers in students:
        assert client.post(f"/courses/{cid}/enroll", headers=s_headers).status_code == 201
    client.post(f"/videos/{course['video_ids'][0]}/watched", headers=students[0][1])
    res = client.post(
        f"/courses/{cid}/certificates",
        json={"userId": students[0][0]["id"], "grade": "A"},
        headers=headers,
    )
    assert res.status_code == 201

    res = client.delete(f"/courses/{cid}", headers=headers)
    assert res.status_code == 200
    removed = res.json()["removed"]
    assert removed["courses"] + removed["videos"] + removed["enrollments"] + removed["certificates"] == 7

    assert db.courses.count_documents({"title": "Doomed"}) == 0
    assert db.videos.count_documents({"course_id": cid}) == 0
    assert db.enrollments.count_documents({"course_id": cid}) == 0
    assert db.certificates.count_documents({"course_id": cid}) == 0
    assert db.video_progress.count_documents({"video_id": {"$in": course["video_ids"]}}) == 0
    assert db.videos.count_documents({"course_id": keep["id"]}) == 1
    assert client.get(f"/courses/{cid}").status_code == 404


def test_teaching_lists_owned_courses(client, api, teacher_x, teacher_y, admin_headers):
    _, x_headers = teacher_x
    _, y_headers = teacher_y
    api.course(x_headers, "X course")
    api.course(y_headers, "Y course")

    assert [c["title"] for c in client.get("/users/teaching", headers=x_headers).json()] == ["X course"]
    assert len(client.get("/users/teaching", headers=admin_headers).json()) == 2
    _, s_headers = api.account("s@example.com")
    assert client.get("/users/teaching", headers=s_headers).status_code == 403


def test_video_ownership_follows_the_course(client, api, teacher_x, teacher_y, admin_headers):
    _, x_headers = teacher_x
    _, y_headers = teacher_y
    course = api.course(x_headers, "Owned", videos=1)
    video_id = course["video_ids"][0]

    res = client.post(
        "/videos",
        json={"title": "Intruder", "link": "https://videos.example.com/i", "courseId": course["id"]},
        headers=y_headers,
    )
    assert res.status_code == 403
    assert client.put(f"/videos/{video_id}", json={"title": "Mine now"}, headers=y_headers).status_code == 403
    assert client.delete(f"/videos/{video_id}", headers=y_headers).status_code == 403

    res = client.put(f"/videos/{video_id}", json={"title": "Renamed"}, headers=x_headers)
    assert res.status_code == 200
    assert res.json()["title"] == "Renamed"
    assert client.put(f"/videos/{video_id}", json={"views": 3}, headers=admin_headers).status_code == 200

    assert client.delete(f"/videos/{video_id}", headers=x_headers).status_code == 200
    assert client.get(f"/videos/{video_id}").status_code == 404


def test_video_for_unknown_course(client, teacher_x):
    _, headers = teacher_x
    res = client.post(
        "/videos",
        json={"title": "Orphan", "link": "https://videos.example.com/o", "courseId": "000000000000000000000000"},
        headers=headers,
    )
    assert res.status_code == 404


def test_list_videos(client, api, teacher_x):
    _, headers = teacher_x
    first = api.course(headers, "First", videos=3)
    api.course(headers, "Second", videos=2)

    res = client.get("/videos", params={"courseId": first["id"]})
    assert res.json()["pagination"]["total"] == 3
    assert all(v["course_id"] == first["id"] for v in res.json()["data"])

    res = client.get("/videos", params={"search": "second"})
    assert res.json()["pagination"]["total"] == 2

    res = client.get("/videos", params={"limit": 1000})
    assert res.json()["pagination"]["limit"] == 100
