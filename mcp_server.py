#!/usr/bin/env python3
"""
stackdeploy MCP Server

A Model Context Protocol server over stdio exposing the deployment
orchestrator to MCP clients:
- Trigger a deployment of a revision (or the branch tip)
- Restore the last known-good stack
- Inspect the live stack, pipeline runs and deployment outcomes
"""

import asyncio
import contextlib
import json
import logging
from typing import Any, Dict, List, Optional

from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from mcp.server.stdio import stdio_server
from mcp.types import Resource, TextContent, Tool

from stackdeploy import __version__
from stackdeploy.config import settings
from stackdeploy.dependencies import Orchestrator, build_orchestrator
from stackdeploy.domain.entities import TriggerSource
from stackdeploy.domain.errors import OrchestratorError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

server = Server("stackdeploy")
_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator(settings)
    return _orchestrator


def _json(payload: Any) -> str:
    return json.dumps(payload, indent=2, default=str)


@server.list_resources()
async def handle_list_resources() -> List[Resource]:
    return [
        Resource(
            uri="stack://live",
            name="Live Stack",
            description="Versioned record of the currently live two-tier stack",
            mimeType="application/json",
        ),
        Resource(
            uri="stack://outcomes",
            name="Deployment Outcomes",
            description="Most recent terminal deployment outcomes",
            mimeType="application/json",
        ),
    ]


def read_resource(orch: Orchestrator, uri: str) -> str:
    if uri == "stack://live":
        return orch.repository.current().model_dump_json(indent=2)
    if uri == "stack://outcomes":
        return _json([o.model_dump(mode="json") for o in orch.outcomes.recent(20)])
    raise ValueError(f"Unknown resource: {uri}")


@server.read_resource()
async def handle_read_resource(uri) -> str:
    logger.info(f"📖 Reading resource: {uri}")
    return read_resource(get_orchestrator(), str(uri))


@server.list_tools()
async def handle_list_tools() -> List[Tool]:
    return [
        Tool(
            name="trigger_deployment",
            description="Queue a deployment of a revision (defaults to the tracked branch tip)",
            inputSchema={
                "type": "object",
                "properties": {
                    "revision_id": {"type": "string", "description": "Revision to deploy"},
                    "force": {"type": "boolean", "description": "Deploy even if already requested"},
                },
            },
        ),
        Tool(
            name="rollback_stack",
            description="Restore the last known-good stack",
            inputSchema={
                "type": "object",
                "properties": {"reason": {"type": "string", "description": "Reason for the rollback"}},
                "required": ["reason"],
            },
        ),
        Tool(
            name="get_live_stack",
            description="Show the live stack record",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="list_outcomes",
            description="List recent deployment outcomes",
            inputSchema={
                "type": "object",
                "properties": {"limit": {"type": "integer", "minimum": 1, "maximum": 500}},
            },
        ),
        Tool(
            name="get_run",
            description="Show a pipeline run's stages, outcome and console",
            inputSchema={
                "type": "object",
                "properties": {"number": {"type": "integer", "description": "Run number"}},
                "required": ["number"],
            },
        ),
    ]


async def call_tool(orch: Orchestrator, name: str, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Execute a tool and return its JSON-serializable result."""
    if name == "trigger_deployment":
        revision_id = arguments.get("revision_id") or await orch.watcher.resolve_tip()
        request = orch.watcher.notify(revision_id, TriggerSource.MANUAL, force=bool(arguments.get("force")))
        if request is None:
            return {"accepted": False, "message": f"{revision_id[:12]} was already requested"}
        run = orch.pipeline.run_for_request(request.request_id)
        return {"accepted": True, "run_number": run.number, "request": request.model_dump(mode="json")}

    if name == "rollback_stack":
        reason = str(arguments.get("reason", "")).strip()
        if len(reason) < 5:
            raise ValueError("Rollback reason must be at least 5 characters")
        outcome = await orch.pipeline.rollback(reason)
        return outcome.model_dump(mode="json")

    if name == "get_live_stack":
        return orch.repository.current().model_dump(mode="json")

    if name == "list_outcomes":
        limit = int(arguments.get("limit", 20))
        return {"outcomes": [o.model_dump(mode="json") for o in orch.outcomes.recent(limit)]}

    if name == "get_run":
        run = orch.pipeline.get_run(int(arguments["number"]))
        if run is None:
            raise ValueError(f"Run #{arguments['number']} not found")
        return run.model_dump(mode="json")

    raise ValueError(f"Unknown tool: {name}")


@server.call_tool()
async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[TextContent]:
    logger.info(f"🔧 Calling tool: {name}")
    try:
        result = await call_tool(get_orchestrator(), name, arguments or {})
    except OrchestratorError as e:
        logger.warning(f"❌ {name} failed: {e.message}")
        return [TextContent(type="text", text=_json({"success": False, "error": e.message, "error_code": e.error_code}))]
    except ValueError as e:
        return [TextContent(type="text", text=_json({"success": False, "error": str(e)}))]
    return [TextContent(type="text", text=_json({"success": True, "result": result}))]


async def main():
    """Main entry point for the MCP server."""
    logger.info("🚀 Starting stackdeploy MCP Server...")
    orch = get_orchestrator()
    stop_event = asyncio.Event()
    tasks = [asyncio.create_task(orch.pipeline.run_worker(), name="pipeline-worker")]
    if orch.settings.WATCHER_ENABLED and orch.settings.REPO_URL:
        tasks.append(asyncio.create_task(orch.watcher.run(stop_event), name="source-watcher"))

    try:
        async with stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="stackdeploy",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )
    finally:
        stop_event.set()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


if __name__ == "__main__":
    asyncio.run(main())
