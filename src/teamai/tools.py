"""Tool adapter exposing Team AI operations to assistant hosts.

Hosts (MCP servers, IDE extensions) list the tools returned by
``get_tool_definitions`` and forward calls to a ToolDispatcher. Each call
returns a ToolResult with plain text for the model, an error flag, and the
agent id when the call registered one.

Every call runs on a worker thread bounded by
``messaging.operation_timeout`` so a stuck filesystem cannot hang the host.
Errors read ``Error executing <tool>: <operation>: <message>``.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .coordinator import AgentView, Coordinator
from .exceptions import TeamAIError, Timeout, describe_error
from .logging_config import get_logger
from .mailbox import Message
from .validators import ValidationError

__all__ = [
    "TOOL_NAMES",
    "ToolResult",
    "ToolDispatcher",
    "get_tool_definitions",
]

logger = get_logger(__name__)

# Tool name -> operation name used in error reports
_OPERATIONS = {
    "team-ai-list": "list_agents",
    "team-ai-register": "register",
    "team-ai-send": "send",
    "team-ai-check": "check",
    "team-ai-status": "status",
    "team-ai-agents-by-capability": "agents_by_capability",
    "team-ai-broadcast": "broadcast",
    "team-ai-watch-start": "watch_start",
}

TOOL_NAMES = tuple(_OPERATIONS)

_TYPE_SCHEMA = {"type": "string", "enum": ["request", "info", "query"], "description": "Message type"}
_PRIORITY_SCHEMA = {
    "type": "string",
    "enum": ["low", "normal", "high"],
    "description": "Message priority",
    "default": "normal",
}


def get_tool_definitions(client_type: str = "client") -> list[dict[str, Any]]:
    """Return the tool list with JSON-schema inputs.

    Args:
        client_type: Client name used in examples (cursor, vscode, ...)
    """
    return [
        {
            "name": "team-ai-list",
            "description": "List all registered AI agents in the Team AI. "
            "Shows agent IDs, names, states, and current tasks.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "all": {"type": "boolean", "description": "Include completed agents", "default": False},
                    "verbose": {"type": "boolean", "description": "Show detailed information", "default": False},
                },
            },
        },
        {
            "name": "team-ai-register",
            "description": "Register this session as an agent in the Team AI for multi-agent coordination.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "name": {"type": "string", "description": f"Agent name (e.g., '{client_type}-frontend')"},
                    "command": {"type": "string", "description": "Current task description"},
                    "tags": {"type": "string", "description": "Comma-separated tags (e.g., 'frontend,react')"},
                    "capabilities": {
                        "type": "string",
                        "description": "Comma-separated capabilities (e.g., 'typescript,css')",
                    },
                },
                "required": ["name", "command"],
            },
        },
        {
            "name": "team-ai-send",
            "description": "Send a message to another AI agent's inbox.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "target": {"type": "string", "description": "Target agent ID or name"},
                    "subject": {"type": "string", "description": "Message subject"},
                    "body": {"type": "string", "description": "Message body"},
                    "type": dict(_TYPE_SCHEMA, default="request"),
                    "priority": dict(_PRIORITY_SCHEMA),
                    "artifact": {
                        "type": "string",
                        "description": "Path to artifact file to attach (screenshot, plan, etc.)",
                    },
                },
                "required": ["target", "subject", "body"],
            },
        },
        {
            "name": "team-ai-check",
            "description": "Check for incoming messages in an agent's inbox.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "agentId": {"type": "string", "description": "Agent ID to check messages for"},
                    "all": {"type": "boolean", "description": "Include consumed messages", "default": False},
                },
                "required": ["agentId"],
            },
        },
        {
            "name": "team-ai-status",
            "description": "Get the current status of Team AI installation.",
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "team-ai-agents-by-capability",
            "description": "Find agents with specific capabilities (e.g., 'typescript', 'python', 'frontend').",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "capability": {"type": "string", "description": "The capability to search for"},
                },
                "required": ["capability"],
            },
        },
        {
            "name": "team-ai-broadcast",
            "description": "Send a message to multiple agents at once "
            "(all active agents or filtered by tags/capabilities).",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "subject": {"type": "string", "description": "Message subject"},
                    "body": {"type": "string", "description": "Message body"},
                    "type": dict(_TYPE_SCHEMA, default="info"),
                    "priority": dict(_PRIORITY_SCHEMA),
                    "filterTag": {"type": "string", "description": "Only send to agents with this tag"},
                    "filterCapability": {
                        "type": "string",
                        "description": "Only send to agents with this capability",
                    },
                    "excludeSelf": {
                        "type": "boolean",
                        "description": "Exclude the sending agent from broadcast",
                        "default": True,
                    },
                },
                "required": ["subject", "body"],
            },
        },
        {
            "name": "team-ai-watch-start",
            "description": "Start watching for incoming messages in background. Returns immediately.",
            "inputSchema": {
                "type": "object",
                "properties": {
                    "agentId": {"type": "string", "description": "Agent ID to watch messages for"},
                    "interval": {"type": "number", "description": "Poll interval in seconds (default: 5)", "default": 5},
                },
                "required": ["agentId"],
            },
        },
    ]


@dataclass
class ToolResult:
    """Outcome of one tool call."""

    text: str
    is_error: bool = False
    agent_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """MCP-style content payload."""
        data: dict[str, Any] = {"content": [{"type": "text", "text": self.text}]}
        if self.is_error:
            data["isError"] = True
        if self.agent_id:
            data["agentId"] = self.agent_id
        return data


def _require(arguments: dict[str, Any], *names: str) -> None:
    for name in names:
        value = arguments.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"Missing required argument: {name}")


def _short(agent_id: str) -> str:
    return agent_id[:8]


def format_agent_line(view: AgentView, verbose: bool = False) -> str:
    record = view.record
    line = f"- {record.name} ({_short(record.id)}) [{view.state.value}] {record.current_task}".rstrip()
    if not verbose:
        return line
    details = [
        f"    id: {record.id}",
        f"    model: {record.model or '-'}  client: {record.client or '-'}",
        f"    tags: {', '.join(record.tags) or '-'}",
        f"    capabilities: {', '.join(record.capabilities) or '-'}",
        f"    last heartbeat: {record.last_heartbeat.isoformat() if record.last_heartbeat else 'never'}",
        f"    pending messages: {view.pending}",
    ]
    return "\n".join([line] + details)


def format_message(message: Message) -> str:
    lines = [
        f"[{message.status.value}] {message.priority.value} {message.msg_type.value} from {message.sender}",
        f"Subject: {message.subject}",
        f"Date: {message.sent_at.isoformat() if message.sent_at else '-'}",
        f"Message-ID: {message.message_id}",
    ]
    if message.artifact:
        lines.append(f"Artifact: {message.artifact}")
    return "\n".join(lines) + "\n\n" + message.body


class ToolDispatcher:
    """Executes tool calls against a Coordinator.

    Args:
        coordinator: Coordinator to operate on
        model: Model identifier recorded on registration
        client: Client identifier recorded on registration
        timeout: Per-call time bound in seconds (default: config)
        session: Optional AgentSession; its heartbeat is refreshed on every
            call and it adopts ids registered through team-ai-register
    """

    def __init__(
        self,
        coordinator: Coordinator,
        model: str = "",
        client: str = "",
        timeout: Optional[float] = None,
        session=None,
    ):
        self.coordinator = coordinator
        self.model = model
        self.client = client
        self.timeout = timeout if timeout is not None else coordinator.config.messaging.operation_timeout
        self.session = session
        self._executor = concurrent.futures.ThreadPoolExecutor(max_workers=4, thread_name_prefix="teamai-tool")
        self._handlers: dict[str, Callable[[dict[str, Any], Optional[str]], ToolResult]] = {
            "team-ai-list": self._list,
            "team-ai-register": self._register,
            "team-ai-send": self._send,
            "team-ai-check": self._check,
            "team-ai-status": self._status,
            "team-ai-agents-by-capability": self._agents_by_capability,
            "team-ai-broadcast": self._broadcast,
            "team-ai-watch-start": self._watch_start,
        }

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    def call(self, name: str, arguments: Optional[dict[str, Any]] = None, agent_id: Optional[str] = None) -> ToolResult:
        """Run one tool call and never raise.

        Args:
            name: Tool name
            arguments: Tool arguments as sent by the host
            agent_id: Calling agent (defaults to the session's agent)
        """
        handler = self._handlers.get(name)
        if handler is None:
            return ToolResult(f"Unknown tool: {name}", is_error=True)

        arguments = dict(arguments or {})
        if agent_id is None and self.session is not None:
            agent_id = self.session.agent_id
        operation = _OPERATIONS[name]

        future = self._executor.submit(handler, arguments, agent_id)
        try:
            result = future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            logger.error(f"{name} timed out after {self.timeout}s")
            error = Timeout(f"Operation timed out after {self.timeout}s", operation)
            result = ToolResult(f"Error executing {name}: {describe_error(error)}", is_error=True)
        except (TeamAIError, ValidationError, OSError) as e:
            result = ToolResult(f"Error executing {name}: {describe_error(e, operation)}", is_error=True)
        except Exception as e:
            logger.exception(f"Unexpected error in {name}")
            result = ToolResult(f"Error executing {name}: {describe_error(e, operation)}", is_error=True)

        if result.agent_id and self.session is not None:
            self.session.adopt(result.agent_id)
        if self.session is not None:
            self.session.touch()
        return result

    def _sender(self, agent_id: Optional[str], operation: str) -> str:
        if not agent_id:
            raise TeamAIError("This session is not registered; call team-ai-register first", operation)
        return agent_id

    def _list(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        views = self.coordinator.list_agents(include_completed=bool(args.get("all")))
        if not views:
            return ToolResult("No agents registered")
        verbose = bool(args.get("verbose"))
        lines = [format_agent_line(v, verbose=verbose) for v in views]
        return ToolResult(f"Registered agents ({len(views)}):\n" + "\n".join(lines))

    def _register(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        _require(args, "name", "command")
        record = self.coordinator.register(
            name=args["name"],
            current_task=args["command"],
            model=self.model,
            client=self.client,
            tags=args.get("tags"),
            capabilities=args.get("capabilities"),
        )
        return ToolResult(
            f"Successfully registered as agent: {record.id}\n\n"
            f'Use this ID to check messages: team-ai-check with agentId="{record.id}"',
            agent_id=record.id,
        )

    def _send(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        _require(args, "target", "subject", "body")
        sender = self._sender(agent_id, "send")
        message = self.coordinator.send(
            sender,
            args["target"],
            args["subject"],
            args["body"],
            msg_type=args.get("type") or "request",
            priority=args.get("priority") or "normal",
            artifact=args.get("artifact") or None,
        )
        text = f"Message sent to {message.recipient}: {message.subject}\nMessage-ID: {message.message_id}"
        if message.artifact:
            text += f"\nArtifact: {message.artifact}"
        return ToolResult(text)

    def _check(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        _require(args, "agentId")
        messages = self.coordinator.check(args["agentId"], include_consumed=bool(args.get("all")))
        if not messages:
            return ToolResult(f"No pending messages for {args['agentId']}")
        blocks = "\n\n---\n\n".join(format_message(m) for m in messages)
        return ToolResult(f"{len(messages)} message(s) for {args['agentId']}:\n\n{blocks}")

    def _status(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        status = self.coordinator.status()

        def yes(flag: bool) -> str:
            return "Yes" if flag else "No"

        return ToolResult(
            "Team AI Status:\n"
            f"- Installed: {yes(status.installed)}\n"
            f"- Artifacts directory: {yes(status.artifacts_dir)}\n"
            f"- Locks directory: {yes(status.locks_dir)}\n"
            f"- Directory: {status.root}\n"
            f"- Registered agents: {status.registered}\n"
            f"- Active: {status.active}\n"
            f"- Stale: {status.stale}\n"
            f"- Completed: {status.completed}\n"
            f"- Pending messages: {status.pending_messages}"
        )

    def _agents_by_capability(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        _require(args, "capability")
        capability = args["capability"].strip().lower()
        views = self.coordinator.agents_by_capability(capability)
        if not views:
            return ToolResult(f"No agents found with capability: {capability}")
        lines = [
            f"- {v.name} ({_short(v.id)}): {v.record.current_task} [{v.state.value}]" for v in views
        ]
        return ToolResult(f'Agents with capability "{capability}":\n' + "\n".join(lines))

    def _broadcast(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        _require(args, "subject", "body")
        sender = self._sender(agent_id, "broadcast")
        result = self.coordinator.broadcast(
            sender,
            args["subject"],
            args["body"],
            msg_type=args.get("type") or "info",
            priority=args.get("priority") or "normal",
            tag=args.get("filterTag") or None,
            capability=args.get("filterCapability") or None,
            exclude_self=args.get("excludeSelf") is not False,
        )
        lines = [f"- {o.name}: {'sent' if o.success else 'failed'}" for o in result.outcomes]
        return ToolResult(f"Broadcast sent to {result.sent}/{result.total} agents:\n" + "\n".join(lines))

    def _watch_start(self, args: dict[str, Any], agent_id: Optional[str]) -> ToolResult:
        _require(args, "agentId")
        self.coordinator.watch_start(args["agentId"], interval=args.get("interval"))
        return ToolResult(f"Started watching for messages (agent: {args['agentId']})")
