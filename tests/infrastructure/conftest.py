"""Infrastructure fixtures — in-process FastAPI fake backend reached through httpx.ASGITransport.

Invariants:
    - Every test gets a fresh fake backend with its own team table
    - `failures` queues (status, headers, body) tuples returned before normal handling
    - `requests` logs (method, path, authorization) for every request received

Design Decisions:
    - ASGITransport instead of a live server: no sockets, deterministic
    - Failure injection as middleware: applies to every route uniformly
"""

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from optimistic.config import Settings
from optimistic.infrastructure.http_client import ResilientHttpClient
from optimistic.services.retry_policy import RetryPolicy


class FakeBackend:
    def __init__(self):
        self.teams: dict[int, dict] = {1: {"id": 1, "title": "Alpha"}}
        self.next_id = 2
        self.failures: list[tuple[int, dict, dict]] = []
        self.requests: list[tuple[str, str, str | None]] = []
        self.app = self._build_app()

    def fail_next(self, status: int, headers: dict | None = None, body: dict | None = None):
        self.failures.append((status, headers or {}, body or {}))

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        backend = self

        @app.middleware("http")
        async def inject_failures(request: Request, call_next):
            backend.requests.append(
                (request.method, request.url.path, request.headers.get("authorization")),
            )
            if backend.failures:
                status, headers, body = backend.failures.pop(0)
                return JSONResponse(body, status_code=status, headers=headers)
            return await call_next(request)

        @app.get("/api/teams")
        async def list_teams():
            return {"success": True, "data": list(backend.teams.values())}

        @app.post("/api/teams", status_code=201)
        async def create_team(payload: dict):
            team = {**payload, "id": backend.next_id}
            backend.teams[team["id"]] = team
            backend.next_id += 1
            return {"success": True, "data": team}

        @app.put("/api/teams/{team_id}")
        async def update_team(team_id: int, payload: dict):
            if team_id not in backend.teams:
                raise HTTPException(status_code=404, detail="Team not found")
            backend.teams[team_id] = {**payload, "id": team_id, "version": 2}
            return backend.teams[team_id]

        @app.delete("/api/teams/{team_id}", status_code=204)
        async def delete_team(team_id: int):
            if backend.teams.pop(team_id, None) is None:
                raise HTTPException(status_code=404, detail="Team not found")
            return Response(status_code=204)

        return app


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
async def http(backend, credentials, sleep):
    settings = Settings(api_base_url="http://test/api")
    policy = RetryPolicy.from_settings(settings, credentials=credentials, sleep=sleep)
    client = ResilientHttpClient.from_settings(
        settings, policy, credentials, transport=httpx.ASGITransport(app=backend.app),
    )
    yield client
    await client.aclose()
