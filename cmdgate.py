"""cmdgate: a policy-enforcing command execution gateway.

Exposes a fixed set of commands (cat, ls, bazel, git) as tools. Every
call is validated against a static allowlist, a path guard and an
argument sanitizer before a process is created, runs without a shell
under a timeout, and can have its output filtered in-process.

Usage (MCP over stdio, default):
    cmdgate [--config .cmdgate.toml] [--blocked-path /etc] [options]

Usage (one-shot):
    cmdgate --call ls --args '{"path": "src", "sort": true}'

Run 'cmdgate --help' for all options.
"""

import argparse
import asyncio
import json
import os
import sys

# Add parent directory to path so imports work when run directly
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.audit_log import AuditLog
from core.config import ConfigError, generate_sample_config, load_config, merge_cli_args
from core.gateway import build_gateway
from core.mcp_server import serve
from core.path_registry import PathRegistry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdgate",
        description="cmdgate: policy-enforcing command execution gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to config file (default: auto-detect .cmdgate.toml)",
    )
    parser.add_argument(
        "--no-config", action="store_true",
        help="Ignore config files, use only CLI flags and environment",
    )
    parser.add_argument(
        "--init-config", action="store_true",
        help="Generate a sample .cmdgate.toml and exit",
    )
    parser.add_argument(
        "--blocked-path", action="append", default=None, metavar="PREFIX",
        help="Absolute path prefix no tool may touch (repeatable, added to config)",
    )
    parser.add_argument(
        "--timeout-ms", type=int, default=None,
        help="Default command timeout in milliseconds (default: 180000)",
    )
    parser.add_argument(
        "--audit-dir", default=None,
        help="Directory for the JSONL audit log (default: cwd)",
    )
    parser.add_argument(
        "--no-audit", action="store_true",
        help="Do not write an audit log",
    )
    parser.add_argument(
        "--list-tools", action="store_true",
        help="Print the tool schemas as JSON and exit",
    )
    parser.add_argument(
        "--call", default=None, metavar="TOOL",
        help="Run one tool call, print the result and exit",
    )
    parser.add_argument(
        "--args", default="{}", metavar="JSON",
        help="Arguments for --call as a JSON object",
    )
    parser.add_argument(
        "--stream", action="store_true",
        help="With --call: print each output line to stderr as it arrives",
    )
    return parser


def _print_progress(sequence_number: int, text: str) -> None:
    print(f"[{sequence_number}] {text}", file=sys.stderr, flush=True)


def main(argv=None):
    args = build_parser().parse_args(argv)

    # Generate sample config and exit
    if args.init_config:
        with open(".cmdgate.toml", "w", encoding="utf-8") as f:
            f.write(generate_sample_config())
        print("Created .cmdgate.toml with default settings.")
        sys.exit(0)

    # Load configuration: DEFAULTS → config file → CLI args
    try:
        config = load_config(args.config, search=not args.no_config)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    config = merge_cli_args(config, args)

    config_file = config.get("_config_file")
    if config_file:
        print(f"Config: {config_file}", file=sys.stderr)

    call_arguments = None
    if args.call:
        try:
            call_arguments = json.loads(args.args)
        except json.JSONDecodeError as e:
            print(f"Error: --args is not valid JSON: {e}", file=sys.stderr)
            sys.exit(1)
        if not isinstance(call_arguments, dict):
            print("Error: --args must be a JSON object", file=sys.stderr)
            sys.exit(1)

    # Resolve absolute paths for tool binaries (PATH poisoning defense)
    path_reg = PathRegistry()
    try:
        resolved = path_reg.resolve_all()
        print(f"Paths: {len(resolved)} binaries resolved to absolute paths.", file=sys.stderr)
    except RuntimeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    for w in path_reg.warnings:
        print(f"  WARN: {w}", file=sys.stderr)

    audit = None if args.no_audit else AuditLog(log_dir=config.get("audit_dir"))

    try:
        gateway = build_gateway(config, audit=audit, paths=path_reg)
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    if args.list_tools:
        print(json.dumps(gateway.list_tools(), indent=2))
        sys.exit(0)

    blocked = gateway.policy.blocked_path_prefixes
    if blocked:
        print(f"Blocked paths: {', '.join(sorted(blocked))}", file=sys.stderr)
    if audit is not None:
        audit.session_start(
            blocked_paths=blocked,
            tools=gateway.registry.names(),
            mode="call" if args.call else "mcp",
        )

    try:
        if args.call:
            response = gateway.handle(
                args.call, call_arguments,
                progress_sink=_print_progress if args.stream else None,
            )
            print(response.text)
            sys.exit(1 if response.is_error else 0)

        try:
            asyncio.run(serve(gateway))
        except KeyboardInterrupt:
            print("\n[cmdgate] Interrupted.", file=sys.stderr)
    finally:
        if audit is not None:
            audit.session_end(tool_calls=gateway.tool_calls, errors=gateway.errors)


if __name__ == "__main__":
    main()
