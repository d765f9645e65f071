import pytest


@pytest.fixture
def mock_test(client, api):
    _, teacher_headers = api.account("teach@example.com", role="TEACHER")
    course = api.course(teacher_headers, "Examined")
    res = client.post(
        f"/courses/{course['id']}/mock-tests",
        json={"title": "Midterm practice", "scheduledAt": "2030-01-15T10:00:00Z"},
        headers=teacher_headers,
    )
    assert res.status_code == 201
    return course, res.json()


def test_list_mock_tests_for_course(client, api, mock_test):
    course, test = mock_test
    _, headers = api.account("learner@example.com")
    res = client.get(f"/courses/{course['id']}/mock-tests", headers=headers)
    assert [t["id"] for t in res.json()] == [test["id"]]
    assert res.json()[0]["course_id"] == course["id"]


def test_only_the_owner_schedules_tests(client, api, mock_test):
    course, _ = mock_test
    _, headers = api.account("learner@example.com")
    res = client.post(
        f"/courses/{course['id']}/mock-tests",
        json={"title": "Sneaky", "scheduledAt": "2030-01-15T10:00:00Z"},
        headers=headers,
    )
    assert res.status_code == 403


def test_retakes_keep_the_best_score(client, db, api, mock_test):
    _, test = mock_test
    user, headers = api.account("learner@example.com")

    for score in (40, 70, 55):
        res = client.post(f"/mock-tests/{test['id']}/attempts", json={"score": score}, headers=headers)
        assert res.status_code == 200

    body = res.json()
    assert body["score"] == 70
    assert body["attempts"] == 3
    assert db.mock_attempts.count_documents({"user_id": user["id"], "test_id": test["id"]}) == 1

    attempts = client.get("/users/attempts", headers=headers).json()
    assert len(attempts) == 1
    assert attempts[0]["test_id"] == test["id"]


def test_attempt_validation(client, api, mock_test):
    _, test = mock_test
    _, headers = api.account("learner@example.com")
    assert client.post(f"/mock-tests/{test['id']}/attempts", json={"score": -1}, headers=headers).status_code == 400
    res = client.post("/mock-tests/000000000000000000000000/attempts", json={"score": 1}, headers=headers)
    assert res.status_code == 404
