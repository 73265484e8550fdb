# tests/test_logs.py
"""Tests for the audit log endpoints"""
from unittest.mock import patch


def test_logs_empty(client):
    response = client.get("/api/users/logs")

    assert response.status_code == 200
    assert response.json() == {"totalLogs": 0, "logs": []}


def test_logs_most_recent_first(client):
    client.post("/api/users", json={"name": "Ann", "email": "ann@x.com"})
    client.delete("/api/users/1")
    client.put("/api/users/2/email", json={"currentName": "Maria", "newEmail": "maria2@mail.com"})

    data = client.get("/api/users/logs").json()

    assert data["totalLogs"] == 3
    assert [log["operationType"] for log in data["logs"]] == ["UPDATE_EMAIL", "DELETE_USER", "CREATE_USER"]
    times = [log["operationTime"] for log in data["logs"]]
    assert times == sorted(times, reverse=True)
    assert set(data["logs"][0]) == {
        "id",
        "userId",
        "operationType",
        "operationTime",
        "status",
        "details",
        "ipAddress",
        "userAgent",
    }


def test_logs_filter_and_limit(client):
    client.delete("/api/users/1")
    client.delete("/api/users/1")
    client.delete("/api/users/2")

    data = client.get("/api/users/logs", params={"userId": 1, "limit": 1}).json()

    assert data["totalLogs"] == 1
    assert data["logs"][0]["userId"] == 1
    assert data["logs"][0]["status"] == "FAILED"


def test_logs_scenario_failed_update(client):
    created = client.post("/api/users", json={"name": "Ann", "email": "ann@x.com", "age": 30})
    assert created.status_code == 201
    new_id = created.json()["id"]
    assert client.get(f"/api/users/{new_id}").json() == {
        "id": new_id,
        "name": "Ann",
        "email": "ann@x.com",
        "age": 30,
    }

    invalid = client.post("/api/users", json={"name": "A"})
    assert invalid.status_code == 400
    assert invalid.json()["errorType"] == "ValidationError"

    missing = client.put("/api/users/999", json={"name": "Ann", "email": "ann@x.com", "age": 30})
    assert missing.status_code == 404

    data = client.get("/api/users/logs", params={"userId": 999, "limit": 1}).json()
    assert data["totalLogs"] == 1
    assert data["logs"][0]["userId"] == 999
    assert data["logs"][0]["status"] == "FAILED"
    assert data["logs"][0]["operationType"] == "UPDATE_USER"


def test_logs_rejects_invalid_limit(client):
    response = client.get("/api/users/logs", params={"limit": 0})

    assert response.status_code == 400
    assert "limit" in response.json()["details"]


def test_logs_retrieval_error(client):
    with patch("users_api.main.UserRepository.list_logs", side_effect=RuntimeError("boom")):
        response = client.get("/api/users/logs")

    assert response.status_code == 500
    assert response.json()["errorType"] == "LogRetrievalError"


def test_stats_without_entries(client):
    response = client.get("/api/users/logs/stats")

    assert response.status_code == 200
    assert response.json() == {"message": "No entries in the audit log"}


def test_stats_counts(client):
    client.post("/api/users", json={"name": "Ann", "email": "ann@x.com"})
    client.post("/api/users", json={"name": "A"})
    client.delete("/api/users/1")
    client.delete("/api/users/1")

    data = client.get("/api/users/logs/stats").json()

    assert data["totalOperations"] == 4
    assert data["successOperations"] == 2
    assert data["failedOperations"] == 2
    # users 3, 0 and 1
    assert data["uniqueUsers"] == 3
    assert data["firstLog"] <= data["lastLog"]


def test_stats_error(client):
    with patch("users_api.main.UserRepository.log_statistics", side_effect=RuntimeError("boom")):
        response = client.get("/api/users/logs/stats")

    assert response.status_code == 500
    assert response.json()["errorType"] == "LogStatsError"


def test_logs_rejects_user_id_beyond_integer_range(client):
    response = client.get("/api/users/logs", params={"userId": "99999999999999999999"})

    assert response.status_code == 400
    assert response.json()["errorType"] == "ValidationError"
    assert "userId" in response.json()["details"]
