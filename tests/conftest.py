"""
Pytest configuration and shared fixtures for n8n Bridge tests.
"""

import logging
import sys
from pathlib import Path
from typing import Any

import pytest
import structlog

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from n8n_transfer.utils.logging import clear_secrets  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_secrets():
    """Forget secrets registered by earlier tests."""
    yield
    clear_secrets()


@pytest.fixture
def restore_logging():
    """Put the root logger and structlog back after configure_logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def no_sleep():
    """Async sleep replacement that records requested delays."""
    delays: list[float] = []

    async def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays
    return sleep


def make_workflow(
    workflow_id: str,
    name: str,
    tags: list[str] | None = None,
    credentials: bool = False,
    **extra: Any,
) -> dict[str, Any]:
    """Build a minimal valid two-node workflow payload."""
    http_node: dict[str, Any] = {
        "id": f"{workflow_id}-2",
        "name": "HTTP Request",
        "type": "n8n-nodes-base.httpRequest",
        "typeVersion": 4,
        "position": [200, 0],
        "parameters": {"url": "https://example.com"},
    }
    if credentials:
        http_node["credentials"] = {"httpBasicAuth": {"id": "1", "name": "Basic"}}
    return {
        "id": workflow_id,
        "name": name,
        "active": False,
        "nodes": [
            {
                "id": f"{workflow_id}-1",
                "name": "Start",
                "type": "n8n-nodes-base.manualTrigger",
                "typeVersion": 1,
                "position": [0, 0],
                "parameters": {},
            },
            http_node,
        ],
        "connections": {
            "Start": {"main": [[{"node": "HTTP Request", "type": "main", "index": 0}]]}
        },
        "settings": {},
        "tags": [{"id": f"t-{tag}", "name": tag} for tag in (tags or [])],
        **extra,
    }


@pytest.fixture
def workflow_factory():
    """Return the workflow payload builder."""
    return make_workflow
