"""Shared pytest fixtures and factory functions for plannerbridge tests.

This module provides an in-memory Graph API double, zero-wait executors and
sample export documents so that tests never touch the network or sleep.
"""

import copy
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from plannerbridge.config.models import RetryConfig
from plannerbridge.planner.models import PlanExport
from plannerbridge.transport.client import GraphClient
from plannerbridge.transport.executor import RequestExecutor

GRAPH_TEST_URL = "https://graph.test/v1.0"


#
# Environment
#


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch: pytest.MonkeyPatch, tmp_path_factory) -> None:
    """Isolate tests from PLANNERBRIDGE_* variables and user config files."""
    for name in (
        "PLANNERBRIDGE_ACCESS_TOKEN",
        "PLANNERBRIDGE_GRAPH_URL",
        "PLANNERBRIDGE_TIMEOUT",
        "PLANNERBRIDGE_MAX_RETRIES",
        "PLANNERBRIDGE_THROTTLE_MS",
        "PLANNERBRIDGE_GROUP_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    missing = tmp_path_factory.mktemp("no-config") / "plannerbridge.toml"
    monkeypatch.setenv("PLANNERBRIDGE_CONFIG", str(missing))


#
# Sleep / timing
#


class SleepRecorder:
    """Drop-in for ``time.sleep`` that records requested waits instead of sleeping."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    """Recorder used in place of time.sleep.

    Returns:
        SleepRecorder: Empty recorder.
    """
    return SleepRecorder()


#
# Graph API double
#


def _graph_error(
    status: int, message: str, headers: dict[str, str] | None = None
) -> httpx.Response:
    return httpx.Response(
        status,
        headers=headers,
        json={"error": {"code": f"Http{status}", "message": message}},
    )


class FakeGraph:
    """In-memory stand-in for the Planner and Users endpoints of Microsoft Graph.

    Created plans, buckets and tasks get sequential ids. Plans and tasks get a
    details resource whose ETag changes on every successful PATCH; a PATCH
    with a stale ``If-Match`` is rejected with 412.

    Args:
        users: ``/users/{key}`` lookups, key (principal name or id) -> target id
        mail_users: Mail address -> target id for ``/users?$filter=mail eq '...'``
    """

    def __init__(
        self,
        users: dict[str, str] | None = None,
        mail_users: dict[str, str] | None = None,
    ):
        self.users = dict(users or {})
        self.mail_users = dict(mail_users or {})
        self.requests: list[httpx.Request] = []
        self.resources: dict[str, dict[str, Any]] = {}
        self.versions: dict[str, int] = {}
        self._failures: list[dict[str, Any]] = []
        self._next_id = 0

    def fail(
        self,
        method: str,
        path_fragment: str,
        status: int,
        times: int = 1,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Answer the next ``times`` matching requests with ``status``."""
        self._failures.append(
            {
                "method": method,
                "fragment": path_fragment,
                "status": status,
                "remaining": times,
                "headers": headers or {},
            }
        )

    @staticmethod
    def path_of(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/v1.0")

    @staticmethod
    def body_of(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    def calls(self, method: str | None = None, path_fragment: str = "") -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if (method is None or request.method == method)
            and path_fragment in self.path_of(request)
        ]

    def etag(self, path: str) -> str:
        return f'W/"etag-{self.versions[path]}"'

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = self.path_of(request)

        for rule in self._failures:
            if (
                rule["remaining"] > 0
                and rule["method"] == request.method
                and rule["fragment"] in path
            ):
                rule["remaining"] -= 1
                return _graph_error(
                    rule["status"], f"injected {rule['status']}", rule["headers"]
                )

        if request.method == "POST" and path.startswith("/planner/"):
            return self._create(path, self.body_of(request))
        if path.endswith("/details"):
            return self._details(request, path)
        if path.startswith("/users"):
            return self._users(request, path)
        return _graph_error(404, f"No route for {request.method} {path}")

    def _create(self, path: str, body: dict[str, Any]) -> httpx.Response:
        collection = path.rsplit("/", 1)[-1]
        self._next_id += 1
        new_id = f"{collection.removesuffix('s')}-{self._next_id}"
        created = dict(body, id=new_id)
        self.resources[f"{path}/{new_id}"] = created
        if collection in ("plans", "tasks"):
            details_path = f"{path}/{new_id}/details"
            self.resources[details_path] = {"id": new_id}
            self.versions[details_path] = 1
        return httpx.Response(201, json=created)

    def _details(self, request: httpx.Request, path: str) -> httpx.Response:
        if path not in self.resources:
            return _graph_error(404, f"{path} does not exist")
        if request.method == "GET":
            return httpx.Response(
                200, json={**self.resources[path], "@odata.etag": self.etag(path)}
            )
        if request.method == "PATCH":
            if request.headers.get("If-Match") != self.etag(path):
                return _graph_error(412, "The If-Match header does not match the current ETag")
            self.resources[path].update(self.body_of(request))
            self.versions[path] += 1
            return httpx.Response(204)
        return _graph_error(405, f"{request.method} not allowed")

    def _users(self, request: httpx.Request, path: str) -> httpx.Response:
        if path == "/users":
            expression = request.url.params.get("$filter", "")
            mail = expression.removeprefix("mail eq '").removesuffix("'").replace("''", "'")
            matches = [{"id": self.mail_users[mail]}] if mail in self.mail_users else []
            return httpx.Response(200, json={"value": matches})

        key = path.removeprefix("/users/")
        if key in self.users:
            return httpx.Response(200, json={"id": self.users[key]})
        return _graph_error(404, f"Resource '{key}' does not exist")


@pytest.fixture
def fake_graph() -> FakeGraph:
    """Empty Graph double.

    Returns:
        FakeGraph: Graph double with no users.
    """
    return FakeGraph()


def build_client(handler: Callable[[httpx.Request], httpx.Response]) -> GraphClient:
    return GraphClient(GRAPH_TEST_URL, "test-token", transport=httpx.MockTransport(handler))


@pytest.fixture
def make_executor(sleep_recorder: SleepRecorder):
    """Factory for executors over a mock transport that never really sleep.

    Throttling and backoff default to zero; pass RetryConfig fields to override.
    """
    executors: list[RequestExecutor] = []

    def _make(
        handler: Callable[[httpx.Request], httpx.Response], **retry_overrides: Any
    ) -> RequestExecutor:
        settings: dict[str, Any] = {
            "throttle_delay_ms": 0,
            "base_delay_seconds": 0,
            "rate_limit_wait_seconds": 0,
        }
        settings.update(retry_overrides)
        executor = RequestExecutor(
            build_client(handler), RetryConfig(**settings), sleep=sleep_recorder
        )
        executors.append(executor)
        return executor

    yield _make

    for executor in executors:
        executor.client.close()


#
# Sample export documents
#


SAMPLE_EXPORT: dict[str, Any] = {
    "Plan": {"id": "src-plan-1", "title": "Product launch", "owner": "src-group-1"},
    "Buckets": [
        {"id": "b-todo", "name": "To do", "planId": "src-plan-1", "orderHint": "8585"},
        {"id": "b-done", "name": "Done", "planId": "src-plan-1", "orderHint": "8584"},
    ],
    "Tasks": [
        {
            "id": "t-1",
            "title": "Draft announcement",
            "planId": "src-plan-1",
            "bucketId": "b-todo",
            "assignments": {"u-ana": {"orderHint": " !"}},
            "appliedCategories": {"category1": True, "category2": False},
            "percentComplete": 50,
            "priority": 3,
        },
        {
            "id": "t-2",
            "title": "Book venue",
            "planId": "src-plan-1",
            "bucketId": "b-todo",
            "assignments": {"u-ben": {"orderHint": " !"}},
        },
        {
            "id": "t-3",
            "title": "Send invites",
            "planId": "src-plan-1",
            "bucketId": "b-done",
            "assignments": {"u-cho": {"orderHint": " !"}},
            "dueDateTime": "2024-05-01T00:00:00Z",
        },
        {
            "id": "t-4",
            "title": "Order swag",
            "planId": "src-plan-1",
            "bucketId": "b-done",
            "assignments": {"u-dan": {"orderHint": " !"}},
        },
        {
            "id": "t-5",
            "title": "Wrap-up",
            "planId": "src-plan-1",
            "bucketId": None,
            "assignments": {"u-eve": {"orderHint": " !"}},
        },
    ],
    "TaskDetails": [
        {
            "id": "t-1",
            "description": "Announce the launch on all channels",
            "checklist": {
                "c-1": {"title": "Blog post", "isChecked": True, "orderHint": "8585"},
                "c-2": {"title": "Newsletter", "isChecked": False},
            },
            "previewType": "checklist",
        },
        {
            "id": "t-3",
            "references": {
                "https%3A//contoso%2Esharepoint%2Ecom/invites%2Exlsx": {
                    "alias": "Invite list",
                    "type": "Excel",
                }
            },
        },
    ],
    "Categories": {"category1": "Marketing", "category2": "Logistics", "category30": "Ignored"},
    "UserMap": {
        "u-ana": {"userPrincipalName": "ana@fabrikam.com", "mail": "ana@fabrikam.com"},
        "u-ben": {"userPrincipalName": "ben.old@contoso.com", "mail": "ben@fabrikam.com"},
        "u-cho": {"displayName": "Cho"},
        "u-dan": {"userPrincipalName": "dan@contoso.com"},
    },
}


@pytest.fixture
def sample_export_data() -> dict[str, Any]:
    """Raw export document (2 buckets, 5 tasks, 2 task details, 5 assignees).

    Returns:
        dict: Fresh copy of the sample export.
    """
    return copy.deepcopy(SAMPLE_EXPORT)


@pytest.fixture
def sample_export(sample_export_data: dict[str, Any]) -> PlanExport:
    """Validated sample export.

    Returns:
        PlanExport: Sample export document.
    """
    return PlanExport.model_validate(sample_export_data)


@pytest.fixture
def target_graph() -> FakeGraph:
    """Graph double for the sample export's target tenant.

    ``u-ana`` resolves by principal name and ``u-ben`` by mail. ``u-cho`` only
    resolves through an explicit mapping. ``u-dan`` and ``u-eve`` do not exist.
    """
    return FakeGraph(
        users={"ana@fabrikam.com": "t-ana"},
        mail_users={"ben@fabrikam.com": "t-ben"},
    )
