"""
MCP stdio server: 7 history tools for AI coding agents.

JSON-RPC 2.0 over stdin/stdout, newline-delimited. Logs go to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from ..errors import SavetrailError
from ..store.db import ChangeStore
from ..workspace import Workspace

logger = logging.getLogger(__name__)

TOOLS = [
    {
        "name": "history",
        "description": "List recorded saves, newest first, with rollback/restore eligibility. Pass file_path for one file's history.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Workspace-relative file path (e.g. 'src/main.py')"},
                "limit": {"type": "integer", "default": 50},
            },
        },
    },
    {
        "name": "show_change",
        "description": "Get one change record with its diff and full before/after content.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "Change id"},
            },
            "required": ["id"],
        },
    },
    {
        "name": "range_diff",
        "description": "Diff a file as saved by one change against the same file as saved by a later change.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "from_id": {"type": "integer", "description": "Older change id"},
                "to_id": {"type": "integer", "description": "Newer change id"},
            },
            "required": ["from_id", "to_id"],
        },
    },
    {
        "name": "rollback",
        "description": "Roll a file back to the content right after a change. Returns a preview of the superseded changes unless confirm=true.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "Target change id"},
                "confirm": {"type": "boolean", "default": False, "description": "Apply the rollback"},
            },
            "required": ["id"],
        },
    },
    {
        "name": "batch_rollback",
        "description": "Roll back several files in one action. The oldest given change per file is the target; failures are reported per file.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "ids": {"type": "array", "items": {"type": "integer"}, "description": "Target change ids"},
            },
            "required": ["ids"],
        },
    },
    {
        "name": "restore",
        "description": "Undo the latest rollback of a file, bringing back the content it replaced.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "id": {"type": "integer", "description": "Rollback change id"},
            },
            "required": ["id"],
        },
    },
    {
        "name": "retention",
        "description": "Manage stored history. Actions: 'stats', 'prune', 'clear'.",
        "inputSchema": {
            "type": "object",
            "properties": {
                "action": {
                    "type": "string",
                    "enum": ["stats", "prune", "clear"],
                    "default": "stats",
                    "description": "Action to perform",
                },
                "days": {"type": "integer", "description": "Retention days for prune (default: config)"},
                "max_records": {"type": "integer", "description": "Record cap for prune (default: config)"},
            },
        },
    },
]


class MCPServer:
    """MCP stdio server for local history tools."""

    def __init__(self, project_root: Path, db_path: Optional[Path] = None, watch: bool = False):
        self.project_root = project_root.resolve()
        store = ChangeStore(db_path) if db_path is not None else None
        self.workspace = Workspace(self.project_root, store=store)
        self._stop = threading.Event()
        self._watch_thread: Optional[threading.Thread] = None
        if watch and self.workspace.config.enabled:
            self._start_watcher()

    def _start_watcher(self):
        watcher = self.workspace.create_watcher()
        self._watch_thread = threading.Thread(
            target=watcher.run,
            kwargs={"stop_event": self._stop},
            name="savetrail-watcher",
            daemon=True,
        )
        self._watch_thread.start()

    def close(self):
        self._stop.set()
        if self._watch_thread is not None:
            self._watch_thread.join(timeout=5)
        self.workspace.close()

    def handle_tool(self, name: str, args: dict) -> dict:
        try:
            result = self._dispatch(name, args)
            text = json.dumps(result, indent=2, default=str)
            return {"content": [{"type": "text", "text": text}]}
        except SavetrailError as e:
            return {"content": [{"type": "text", "text": f"Error [{e.kind}]: {e}"}], "isError": True}
        except (KeyError, TypeError, ValueError) as e:
            return {"content": [{"type": "text", "text": f"Error [invalid_arguments]: {e}"}], "isError": True}

    def _dispatch(self, name: str, args: dict) -> Any:
        ws = self.workspace

        if name == "history":
            limit = int(args.get("limit", 50))
            if args.get("file_path"):
                statuses = ws.controller.list_by_file(args["file_path"], limit=limit)
            else:
                statuses = ws.controller.list_recent(limit=limit)
            return [s.to_dict() for s in statuses]

        elif name == "show_change":
            return ws.controller.get_change(int(args["id"])).to_dict(include_content=True)

        elif name == "range_diff":
            return ws.controller.range_diff(int(args["from_id"]), int(args["to_id"])).to_dict()

        elif name == "rollback":
            change_id = int(args["id"])
            if not args.get("confirm", False):
                return {"status": "preview", **ws.preview_rollback(change_id).to_dict()}
            return {"status": "rolled_back", **ws.rollback(change_id).to_dict()}

        elif name == "batch_rollback":
            ids = [int(i) for i in args["ids"]]
            if not ids:
                raise ValueError("ids must not be empty")
            return ws.batch_rollback(ids).to_dict()

        elif name == "restore":
            return {"status": "restored", **ws.restore(int(args["id"])).to_dict()}

        elif name == "retention":
            return self._handle_retention(args)

        else:
            raise ValueError(f"Unknown tool: {name}")

    def _handle_retention(self, args: dict) -> Any:
        action = args.get("action", "stats")

        if action == "stats":
            return asdict(self.workspace.store.get_stats())

        elif action == "prune":
            return self.workspace.apply_retention(
                retention_days=args.get("days"),
                max_records=args.get("max_records"),
            )

        elif action == "clear":
            return {"deleted": self.workspace.store.clear_all()}

        raise ValueError(f"Unknown retention action: {action}")

    def run(self):
        """Run the MCP server loop (stdio)."""
        try:
            self._loop()
        finally:
            self.close()

    def _loop(self):
        while True:
            msg_id = None
            try:
                line = sys.stdin.readline()
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue

                msg = json.loads(line)
                method = msg.get("method")
                msg_id = msg.get("id")
                params = msg.get("params", {})

                if method == "initialize":
                    self._write({
                        "jsonrpc": "2.0",
                        "id": msg_id,
                        "result": {
                            "protocolVersion": "2024-11-05",
                            "capabilities": {"tools": {}},
                            "serverInfo": {"name": "savetrail", "version": "0.1.0"},
                        },
                    })
                elif method == "notifications/initialized":
                    pass
                elif method == "tools/list":
                    self._write({
                        "jsonrpc": "2.0",
                        "id": msg_id,
                        "result": {"tools": TOOLS},
                    })
                elif method == "tools/call":
                    result = self.handle_tool(params.get("name", ""), params.get("arguments", {}))
                    self._write({"jsonrpc": "2.0", "id": msg_id, "result": result})
                elif msg_id is not None:
                    self._write({
                        "jsonrpc": "2.0",
                        "id": msg_id,
                        "error": {"code": -32601, "message": f"Unknown method: {method}"},
                    })

            except Exception as e:
                logger.exception("MCP error")
                if msg_id is not None:
                    self._write({
                        "jsonrpc": "2.0",
                        "id": msg_id,
                        "error": {"code": -32603, "message": str(e)},
                    })

    def _write(self, msg: dict):
        print(json.dumps(msg), flush=True)
