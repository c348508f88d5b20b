"""FastAPI server for the Team AI dashboard.

Serves read-only JSON and markdown views of a coordination root. All data
comes from the TeamInspector, so the dashboard never takes locks or
changes state and can run next to live agents.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, PlainTextResponse

from ..config import get_config
from ..exceptions import NotFound
from ..inspector import TeamInspector
from ..paths import get_root

__all__ = ["create_app"]

PLACEHOLDER_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Team AI Dashboard</title>
    <style>
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               max-width: 48rem; margin: 3rem auto; }}
        code {{ background: #eee; padding: 0.1rem 0.4rem; border-radius: 3px; }}
    </style>
</head>
<body>
    <h1>Team AI Dashboard</h1>
    <p>Root: <code>{root}</code></p>
    <ul>
        <li><code>GET /api/agents</code> - Registered agents</li>
        <li><code>GET /api/agents/{{id}}</code> - One agent with pending subjects</li>
        <li><code>GET /api/agents/{{id}}/messages</code> - Messages of one agent</li>
        <li><code>GET /api/stats</code> - Counts by state</li>
        <li><code>GET /api/overview</code> - Markdown overview</li>
        <li><code>GET /docs</code> - API documentation</li>
    </ul>
</body>
</html>
"""


def create_app(
    root: Union[Path, str, None] = None,
    heartbeat_timeout: Optional[float] = None,
) -> FastAPI:
    """Build the dashboard application for one root.

    Args:
        root: Coordination root (default: resolved like the CLI does)
        heartbeat_timeout: Stale threshold (default: configuration)
    """
    if root is None or heartbeat_timeout is None:
        config = get_config()
        root = get_root(root, config)
        if heartbeat_timeout is None:
            heartbeat_timeout = config.liveness.heartbeat_timeout

    inspector = TeamInspector(root, heartbeat_timeout=heartbeat_timeout)

    app = FastAPI(
        title="Team AI Dashboard",
        description="Read-only view of Team AI agents and mailboxes",
        version="1.0.0",
    )
    app.state.inspector = inspector

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=HTMLResponse)
    async def dashboard() -> HTMLResponse:
        return HTMLResponse(content=PLACEHOLDER_HTML.format(root=inspector.root))

    @app.get("/api/agents")
    async def get_agents(include_completed: bool = True) -> dict[str, Any]:
        """List agents with derived state and pending counts."""
        agents = inspector.agents(include_completed=include_completed)
        return {"agents": agents, "count": len(agents)}

    @app.get("/api/agents/{agent_id}")
    async def get_agent(agent_id: str) -> dict[str, Any]:
        try:
            return inspector.agent(agent_id)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=e.message)

    @app.get("/api/agents/{agent_id}/messages")
    async def get_agent_messages(agent_id: str, include_consumed: bool = False) -> dict[str, Any]:
        """Messages of one agent in send order."""
        try:
            messages = inspector.messages(agent_id, include_consumed=include_consumed)
        except NotFound as e:
            raise HTTPException(status_code=404, detail=e.message)
        return {"agent_id": agent_id, "messages": messages, "count": len(messages)}

    @app.get("/api/stats")
    async def get_stats() -> dict[str, Any]:
        return inspector.stats()

    @app.get("/api/overview", response_class=PlainTextResponse)
    async def get_overview() -> PlainTextResponse:
        return PlainTextResponse(inspector.overview_markdown(), media_type="text/markdown")

    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "root": str(inspector.root),
            "installed": inspector.layout.is_installed(),
        }

    return app
