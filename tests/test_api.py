import sys

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(monkeypatch, tmp_path):
    monkeypatch.setenv("EXECUTION_PYTHON", sys.executable)
    monkeypatch.setenv("EXECUTION_WORKSPACE_ROOT", str(tmp_path))
    monkeypatch.setenv("EXECUTION_LOCAL_MEMORY_MB", "0")
    monkeypatch.setenv("EXECUTION_ISOLATION", "local")
    monkeypatch.setenv("EXECUTION_RATE_LIMIT_REQUESTS", "5")

    import main

    with TestClient(main.app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["isolation"] == "local"
    assert {"python", "javascript", "java", "cpp"} <= set(body["languages"])


def test_execute_hello(client):
    response = client.post("/execute", json={"language": "python", "code": "print('Hello')", "input": ""})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["output"] == "Hello\n"
    assert body["error"] is None
    assert isinstance(body["executionTime"], int)


def test_execute_security_violation(client):
    response = client.post("/execute", json={"language": "dynamic-scripting", "code": "import os"})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["errorKind"] == "security_violation"
    assert body["executionTime"] == 0


def test_runtime_error_is_a_normal_verdict(client):
    response = client.post("/execute", json={"language": "python", "code": "1 / 0"})
    assert response.status_code == 200
    assert response.json()["errorKind"] == "runtime_error"


@pytest.mark.parametrize("payload", [
    {"language": "cobol", "code": "DISPLAY 'HI'"},
    {"language": "python", "code": ""},
    {"language": "python", "code": "x" * 10001},
    {"language": "python", "code": "print(1)", "input": "x" * 1001},
])
def test_execute_validation(client, payload):
    assert client.post("/execute", json=payload).status_code == 422


def test_run_tests_redacts_hidden_cases(client):
    payload = {
        "language": "python",
        "code": "print(int(input()) + 1)",
        "testCases": [
            {"input": "1", "expectedOutput": "2"},
            {"input": "41", "expectedOutput": "42", "hidden": True},
            {"input": "2", "expectedOutput": "4"},
        ],
    }
    response = client.post("/execute/tests", json=payload)
    assert response.status_code == 200
    body = response.json()
    assert body["passedTests"] == 2
    assert body["totalTests"] == 3
    assert body["allPassed"] is False
    assert body["success"] is True
    first, hidden, last = body["results"]
    assert first["testCase"] == 1 and first["passed"] and first["actualOutput"] == "2"
    assert hidden["passed"] and hidden["input"] == "hidden" and hidden["actualOutput"] == "hidden"
    assert not last["passed"] and last["actualOutput"] == "3"


def test_run_tests_security_violation_status(client):
    payload = {
        "language": "python",
        "code": "import socket",
        "testCases": [{"input": "", "expectedOutput": ""}],
    }
    response = client.post("/execute/tests", json=payload)
    assert response.status_code == 400
    assert response.json()["results"][0]["errorKind"] == "security_violation"


def test_rate_limit(client):
    payload = {"language": "python", "code": "print(1)"}
    statuses = [client.post("/execute", json=payload).status_code for _ in range(5)]
    assert statuses == [200] * 5

    response = client.post("/execute", json=payload)
    assert response.status_code == 429
    body = response.json()
    assert body["message"] == "Too many requests, please try again later."
    assert body["retryAfter"] >= 1
    assert response.headers["Retry-After"] == str(body["retryAfter"])


def test_rate_limit_ignores_client_supplied_identity(client):
    payload = {"language": "python", "code": "print(1)"}
    statuses = [
        client.post("/execute", json=payload, headers={"X-User-Id": f"user-{n}"}).status_code
        for n in range(6)
    ]
    assert statuses == [200] * 5 + [429]
    assert list(client.app.state.rate_limiter._hits) == ["testclient"]
