"""Command-line interface for Team AI.

This module provides the ``teamai`` entry point and one handler per
subcommand. Handlers delegate to the Coordinator (or the read-only
TeamInspector for views) and exit with 0 on success and 1 on error.
Errors are printed to stderr as ``Error: <operation>: <message>``.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path
from typing import NoReturn, Optional

from .config import (
    ConfigValidationError,
    TeamAIConfig,
    _find_config_file,
    get_config,
    load_config,
)
from .coordinator import Coordinator
from .exceptions import TeamAIError, describe_error
from .inspector import TeamInspector
from .logging_config import setup_logging
from .mailbox import Message, MessageType, Priority
from .paths import get_root
from .tools import format_agent_line, format_message
from .validators import ValidationError, validate_port

__all__ = ["main"]

# Errors a command reports and exits 1 on; anything else is a bug and
# propagates with a traceback
_REPORTED_ERRORS = (TeamAIError, ValidationError, ConfigValidationError, OSError)


def _fail(error: BaseException, operation: Optional[str] = None) -> NoReturn:
    print(f"Error: {describe_error(error, operation)}", file=sys.stderr)
    sys.exit(1)


def _load_config(args: argparse.Namespace) -> TeamAIConfig:
    if getattr(args, "config", None):
        return load_config(Path(args.config))
    return get_config()


def _coordinator(args: argparse.Namespace) -> Coordinator:
    return Coordinator(root=args.root, config=_load_config(args))


def _inspector(args: argparse.Namespace) -> TeamInspector:
    config = _load_config(args)
    return TeamInspector(get_root(args.root, config), heartbeat_timeout=config.liveness.heartbeat_timeout)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


# ----------------------------------------------------------------------
# Agent lifecycle


def cmd_register(args: argparse.Namespace) -> None:
    """Register an agent and print only its new id."""
    try:
        record = _coordinator(args).register(
            name=args.name,
            current_task=args.task or "",
            model=args.model or "",
            client=args.client or "",
            tags=args.tags,
            capabilities=args.capabilities,
            working_directory=args.directory,
        )
    except _REPORTED_ERRORS as e:
        _fail(e, "register")
    print(record.id)
    sys.exit(0)


def cmd_deregister(args: argparse.Namespace) -> None:
    try:
        record = _coordinator(args).deregister(args.agent, purge=args.purge)
    except _REPORTED_ERRORS as e:
        _fail(e, "deregister")
    if record is None:
        print(f"No agent matching '{args.agent}'; nothing to do")
    elif args.purge:
        print(f"Deregistered and purged {record.name} ({record.id})")
    else:
        print(f"Deregistered {record.name} ({record.id})")
    sys.exit(0)


def cmd_heartbeat(args: argparse.Namespace) -> None:
    try:
        record = _coordinator(args).heartbeat(args.agent)
    except _REPORTED_ERRORS as e:
        _fail(e, "heartbeat")
    print(f"Heartbeat recorded for {record.name} ({record.id})")
    sys.exit(0)


def cmd_list(args: argparse.Namespace) -> None:
    """List agents with their derived state."""
    try:
        views = _coordinator(args).list_agents(
            include_completed=args.all, tag=args.tag, capability=args.capability
        )
    except _REPORTED_ERRORS as e:
        _fail(e, "list_agents")

    if args.json:
        _print_json([v.to_dict() for v in views])
    elif not views:
        print("No agents registered")
    else:
        print(f"=== Registered Agents ({len(views)}) ===")
        for view in views:
            print(format_agent_line(view, verbose=args.verbose))
    sys.exit(0)


def cmd_show(args: argparse.Namespace) -> None:
    try:
        view = _coordinator(args).view_agent(args.agent)
    except _REPORTED_ERRORS as e:
        _fail(e, "get_agent")

    if args.json:
        _print_json(view.to_dict())
    else:
        print(format_agent_line(view, verbose=True))
    sys.exit(0)


# ----------------------------------------------------------------------
# Messaging


def cmd_send(args: argparse.Namespace) -> None:
    """Send a message to one agent.

    Exit Codes:
        0: Success - message delivered
        1: Failure - unknown sender or recipient, invalid message, I/O error
    """
    try:
        message = _coordinator(args).send(
            args.sender,
            args.target,
            args.subject,
            args.body,
            msg_type=args.type,
            priority=args.priority,
            artifact=args.artifact,
        )
    except _REPORTED_ERRORS as e:
        _fail(e, "send")

    if args.json:
        _print_json(message.to_dict())
    else:
        print(f"Message sent to {message.recipient}")
        print(f"Message-ID: {message.message_id}")
        if message.artifact:
            print(f"Artifact: {message.artifact}")
    sys.exit(0)


def cmd_check(args: argparse.Namespace) -> None:
    try:
        messages = _coordinator(args).check(args.agent, include_consumed=args.all)
    except _REPORTED_ERRORS as e:
        _fail(e, "check")

    if args.json:
        _print_json([m.to_dict() for m in messages])
    elif not messages:
        print(f"No pending messages for {args.agent}")
    else:
        print(f"=== Messages for {args.agent} ({len(messages)}) ===")
        print("\n\n---\n\n".join(format_message(m) for m in messages))
    sys.exit(0)


def cmd_ack(args: argparse.Namespace) -> None:
    """Mark one or more pending messages consumed."""
    try:
        coordinator = _coordinator(args)
        for message_id in args.message_ids:
            coordinator.acknowledge(args.agent, message_id)
            print(f"Acknowledged {message_id}")
    except _REPORTED_ERRORS as e:
        _fail(e, "acknowledge")
    sys.exit(0)


def cmd_broadcast(args: argparse.Namespace) -> None:
    """Broadcast a message to every live agent matching the filters.

    Exit Codes:
        0: Success - at least one agent reached
        1: Failure - no matching agents, invalid message, or all deliveries failed
    """
    try:
        result = _coordinator(args).broadcast(
            args.sender,
            args.subject,
            args.body,
            msg_type=args.type,
            priority=args.priority,
            tag=args.tag,
            capability=args.capability,
            exclude_self=not args.include_self,
        )
    except _REPORTED_ERRORS as e:
        _fail(e, "broadcast")

    if args.json:
        _print_json(result.to_dict())
    else:
        print(f"Broadcast sent to {result.sent}/{result.total} agents")
        for outcome in result.outcomes:
            status = "sent" if outcome.success else f"failed ({outcome.error})"
            print(f"  - {outcome.name}: {status}")

    sys.exit(0 if result.sent > 0 else 1)


def cmd_watch(args: argparse.Namespace) -> None:
    """Print new messages for an agent until interrupted."""

    def show(messages: list[Message]) -> None:
        for message in messages:
            print(format_message(message))
            print("\n---\n", flush=True)

    try:
        coordinator = _coordinator(args)
        handle = coordinator.watch_start(args.agent, interval=args.interval, callback=show)
    except _REPORTED_ERRORS as e:
        _fail(e, "watch_start")

    print(f"Watching messages for {args.agent} (Ctrl+C to stop)", flush=True)
    try:
        while handle.running:
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("\nStopped watching")
    finally:
        coordinator.close()
    sys.exit(0)


# ----------------------------------------------------------------------
# Queries and views


def cmd_find(args: argparse.Namespace) -> None:
    """Find live agents by tag and/or capability."""
    if not args.tag and not args.capability:
        print("Error: find: give --tag and/or --capability", file=sys.stderr)
        sys.exit(1)
    try:
        views = _coordinator(args).list_agents(tag=args.tag, capability=args.capability)
    except _REPORTED_ERRORS as e:
        _fail(e, "find")

    if args.json:
        _print_json([v.to_dict() for v in views])
    elif not views:
        print("No agents found")
    else:
        for view in views:
            print(format_agent_line(view))
    sys.exit(0)


def cmd_status(args: argparse.Namespace) -> None:
    try:
        status = _coordinator(args).status()
    except _REPORTED_ERRORS as e:
        _fail(e, "status")

    if args.json:
        _print_json(status.to_dict())
        sys.exit(0)

    def yes(flag: bool) -> str:
        return "Yes" if flag else "No"

    print("Team AI Status:")
    print(f"- Installed: {yes(status.installed)}")
    print(f"- Artifacts directory: {yes(status.artifacts_dir)}")
    print(f"- Locks directory: {yes(status.locks_dir)}")
    print(f"- Directory: {status.root}")
    print(f"- Registered agents: {status.registered}")
    print(f"- Active: {status.active}")
    print(f"- Stale: {status.stale}")
    print(f"- Completed: {status.completed}")
    print(f"- Pending messages: {status.pending_messages}")
    sys.exit(0)


def cmd_overview(args: argparse.Namespace) -> None:
    """Print the markdown overview, or one agent's detail."""
    try:
        inspector = _inspector(args)
        if args.agent:
            text = inspector.agent_markdown(args.agent)
        else:
            text = inspector.overview_markdown()
    except _REPORTED_ERRORS as e:
        _fail(e, "overview")
    print(text, end="")
    sys.exit(0)


def cmd_dashboard(args: argparse.Namespace) -> None:
    """Serve the read-only web dashboard (blocking)."""
    from .web.launcher import start_dashboard_server

    try:
        config = _load_config(args)
        root = get_root(args.root, config)
        start_dashboard_server(
            root,
            port=validate_port(args.port) if args.port else config.dashboard.port,
            host=args.host or config.dashboard.host,
            auto_open=args.open,
            heartbeat_timeout=config.liveness.heartbeat_timeout,
        )
    except RuntimeError as e:
        print(f"Error: dashboard: {e}", file=sys.stderr)
        sys.exit(1)
    except _REPORTED_ERRORS as e:
        _fail(e, "dashboard")
    except KeyboardInterrupt:
        print("\nDashboard stopped")
    sys.exit(0)


# ----------------------------------------------------------------------
# Configuration


def cmd_config_show(args: argparse.Namespace) -> None:
    """Display the effective configuration."""
    try:
        config = _load_config(args)
        root = get_root(args.root, config)
    except _REPORTED_ERRORS as e:
        _fail(e, "config")

    source = str(config.source) if config.source else "defaults (no config file found)"
    if args.json:
        _print_json({"source": source, "root": str(root), **config.to_dict()})
        sys.exit(0)

    print(f"Configuration source: {source}")
    print(f"Coordination root: {root}")
    print()
    for section, values in config.to_dict().items():
        print(f"{section}:")
        for key, value in values.items():
            print(f"  {key}: {value}")
        print()
    sys.exit(0)


def cmd_config_validate(args: argparse.Namespace) -> None:
    config_path = Path(args.config) if args.config else _find_config_file()
    if config_path is None:
        print("Error: config: no configuration file found to validate", file=sys.stderr)
        sys.exit(1)

    print(f"Validating: {config_path}")
    try:
        load_config(config_path)
    except ConfigValidationError as e:
        print("Configuration is invalid:", file=sys.stderr)
        print(f"  - {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        _fail(e, "config")
    print(f"Config file is valid: {config_path}")
    sys.exit(0)


# ----------------------------------------------------------------------
# Parser


def _add_message_options(parser: argparse.ArgumentParser, default_type: str) -> None:
    parser.add_argument("--subject", "-s", required=True, help="Message subject")
    parser.add_argument("--body", "-b", required=True, help="Message body")
    parser.add_argument(
        "--type",
        choices=[t.value for t in MessageType],
        default=default_type,
        help=f"Message type (default: {default_type})",
    )
    parser.add_argument(
        "--priority",
        choices=[p.value for p in Priority],
        default=Priority.NORMAL.value,
        help="Message priority (default: normal)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="teamai",
        description="Team AI: file-based coordination for AI coding agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  teamai register --name api-agent --task "Build /login" --tags backend
  teamai list --verbose
  teamai send <SENDER_ID> api-agent --subject "Schema?" --body "Which fields?"
  teamai check <AGENT_ID>
  teamai broadcast <SENDER_ID> --tag frontend --subject "Deploy" --body "Freeze at 5pm"
""",
    )
    parser.add_argument(
        "--root",
        type=str,
        default=None,
        help="Coordination root directory (default: $TEAMAI_ROOT, config, or ~/.team-ai)",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Configuration file (default: search for .teamai.yaml/.yml/.toml)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level for stderr output (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # register
    register_parser = subparsers.add_parser("register", help="Register a new agent and print its id")
    register_parser.add_argument("--name", "-n", required=True, help="Agent name")
    register_parser.add_argument("--task", "-t", help="Current task")
    register_parser.add_argument("--model", help="Model identifier")
    register_parser.add_argument("--client", help="Client identifier (cursor, vscode, ...)")
    register_parser.add_argument("--tags", help="Comma-separated tags")
    register_parser.add_argument("--capabilities", help="Comma-separated capabilities")
    register_parser.add_argument("--directory", help="Working directory (default: current directory)")
    register_parser.set_defaults(func=cmd_register)

    # deregister
    deregister_parser = subparsers.add_parser("deregister", help="Mark an agent completed")
    deregister_parser.add_argument("agent", help="Agent id or name")
    deregister_parser.add_argument("--purge", action="store_true", help="Also delete the agent record")
    deregister_parser.set_defaults(func=cmd_deregister)

    # heartbeat
    heartbeat_parser = subparsers.add_parser("heartbeat", help="Record a heartbeat for an agent")
    heartbeat_parser.add_argument("agent", help="Agent id or name")
    heartbeat_parser.set_defaults(func=cmd_heartbeat)

    # list
    list_parser = subparsers.add_parser("list", help="List registered agents")
    list_parser.add_argument("--all", "-a", action="store_true", help="Include completed agents")
    list_parser.add_argument("--tag", help="Only agents with this tag")
    list_parser.add_argument("--capability", help="Only agents with this capability")
    list_parser.add_argument("--verbose", "-v", action="store_true", help="Show full details")
    list_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    list_parser.set_defaults(func=cmd_list)

    # show
    show_parser = subparsers.add_parser("show", help="Show one agent")
    show_parser.add_argument("agent", help="Agent id or name")
    show_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    show_parser.set_defaults(func=cmd_show)

    # send
    send_parser = subparsers.add_parser("send", help="Send a message to one agent")
    send_parser.add_argument("sender", help="Sending agent id or name")
    send_parser.add_argument("target", help="Recipient agent id or name")
    _add_message_options(send_parser, MessageType.REQUEST.value)
    send_parser.add_argument("--artifact", help="File to attach as an artifact")
    send_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    send_parser.set_defaults(func=cmd_send)

    # check
    check_parser = subparsers.add_parser("check", help="Show messages for an agent")
    check_parser.add_argument("agent", help="Agent id or name")
    check_parser.add_argument("--all", "-a", action="store_true", help="Include consumed messages")
    check_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    check_parser.set_defaults(func=cmd_check)

    # ack
    ack_parser = subparsers.add_parser("ack", help="Mark messages consumed")
    ack_parser.add_argument("agent", help="Agent id or name")
    ack_parser.add_argument("message_ids", nargs="+", help="Message id(s) to acknowledge")
    ack_parser.set_defaults(func=cmd_ack)

    # broadcast
    broadcast_parser = subparsers.add_parser("broadcast", help="Send a message to many agents")
    broadcast_parser.add_argument("sender", help="Sending agent id or name")
    _add_message_options(broadcast_parser, MessageType.INFO.value)
    broadcast_parser.add_argument("--tag", help="Only agents with this tag")
    broadcast_parser.add_argument("--capability", help="Only agents with this capability")
    broadcast_parser.add_argument("--include-self", action="store_true", help="Also deliver to the sender")
    broadcast_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    broadcast_parser.set_defaults(func=cmd_broadcast)

    # watch
    watch_parser = subparsers.add_parser("watch", help="Print new messages as they arrive")
    watch_parser.add_argument("agent", help="Agent id or name")
    watch_parser.add_argument("--interval", type=float, default=None, help="Poll interval in seconds")
    watch_parser.set_defaults(func=cmd_watch)

    # find
    find_parser = subparsers.add_parser("find", help="Find live agents by tag or capability")
    find_parser.add_argument("--tag", help="Tag to match")
    find_parser.add_argument("--capability", help="Capability to match")
    find_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    find_parser.set_defaults(func=cmd_find)

    # status
    status_parser = subparsers.add_parser("status", help="Show installation and agent counts")
    status_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    status_parser.set_defaults(func=cmd_status)

    # overview
    overview_parser = subparsers.add_parser("overview", help="Print a markdown overview")
    overview_parser.add_argument("agent", nargs="?", help="Show details for one agent id")
    overview_parser.set_defaults(func=cmd_overview)

    # dashboard
    dashboard_parser = subparsers.add_parser("dashboard", help="Serve the web dashboard")
    dashboard_parser.add_argument("--host", default=None, help="Host to bind (default: config)")
    dashboard_parser.add_argument("--port", type=int, default=None, help="Port to bind (default: config)")
    dashboard_parser.add_argument("--open", action="store_true", help="Open a browser once started")
    dashboard_parser.set_defaults(func=cmd_dashboard)

    # config
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config command")

    config_show_parser = config_subparsers.add_parser("show", help="Display effective configuration")
    config_show_parser.add_argument("--json", action="store_true", help="Output in JSON format")
    config_show_parser.set_defaults(func=cmd_config_show)

    config_validate_parser = config_subparsers.add_parser("validate", help="Validate configuration file")
    config_validate_parser.set_defaults(func=cmd_config_validate)

    return parser


def main(argv: Optional[list[str]] = None) -> NoReturn:
    """Main entry point for the teamai CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    setup_logging(level=args.log_level)
    args.func(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
