"""Command-line interface for the tree-of-thoughts protocol.

Each subcommand is one protocol call against a JSON-file store, so an
investigation can be driven from a shell across many invocations.

Entry point
-----------
The ``main()`` function is registered as a console script in
``pyproject.toml``::

    [project.scripts]
    tot = "tree_of_thoughts.cli:main"

Usage examples::

    tot start "Why does the cache miss on cold start?"
    tot propose <session_id> nodes.json
    echo '[{"node_id": "R1.A", "state": "EXPLORE", "agent_id": "a1b2c3d"}]' \\
        | tot commit <session_id> -
    tot reclassify <session_id> R3.B EXHAUST
    tot status <session_id> --format table
    tot end <session_id>
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

PERSIST_DIR_ENV = "TOT_PERSIST_DIR"


def _build_parser() -> argparse.ArgumentParser:
    """Build the top-level argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="tot",
        description="Tree-of-Thoughts investigation protocol -- drive an investigation "
        "one protocol call at a time.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        default=False,
        help="Show version and exit.",
    )
    parser.add_argument(
        "--persist-dir",
        type=str,
        default=None,
        help=f"Directory holding investigation documents "
        f"(default: ${PERSIST_DIR_ENV}, the config file, or ./investigations).",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="JSON or YAML config file with 'policy' and 'store' sections.",
    )
    parser.add_argument(
        "--format",
        type=str,
        default="json",
        choices=["json", "table"],
        help="Output format. (default: json)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for diagnostics on stderr. (default: WARNING)",
    )
    parser.add_argument(
        "--verify-agents",
        type=str,
        default=None,
        metavar="PROJECT_DIR",
        help="Verify agent ids against the session logs of PROJECT_DIR.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available subcommands")

    start_parser = subparsers.add_parser("start", help="Start a new investigation.")
    start_parser.add_argument("query", type=str, help="The problem to investigate.")
    start_parser.add_argument(
        "--min-roots", type=int, default=None, help="Minimum number of round-1 roots."
    )

    propose_parser = subparsers.add_parser("propose", help="Stage a batch of nodes.")
    propose_parser.add_argument("session_id", type=str)
    propose_parser.add_argument(
        "nodes", type=str, help="JSON file with a list of nodes, or '-' for stdin."
    )

    commit_parser = subparsers.add_parser("commit", help="Commit agent results.")
    commit_parser.add_argument("session_id", type=str)
    commit_parser.add_argument(
        "results", type=str, help="JSON file with a list of results, or '-' for stdin."
    )

    reclassify_parser = subparsers.add_parser(
        "reclassify", help="Change a committed node's state."
    )
    reclassify_parser.add_argument("session_id", type=str)
    reclassify_parser.add_argument("node_id", type=str)
    reclassify_parser.add_argument("new_state", type=str, help="EXPLORE, FOUND, VERIFY, EXHAUST or DEAD.")

    status_parser = subparsers.add_parser("status", help="Show investigation progress.")
    status_parser.add_argument("session_id", type=str)
    status_parser.add_argument(
        "--dot", action="store_true", default=False, help="Print only the DOT graph."
    )

    end_parser = subparsers.add_parser("end", help="Finish an investigation.")
    end_parser.add_argument("session_id", type=str)

    subparsers.add_parser("list", help="List stored investigation ids.")

    return parser


# =========================================================================
# Wiring
# =========================================================================

def _read_items(source: str, key: str) -> list[dict[str, Any]]:
    """Load a JSON list from *source* (path or ``-``).

    A mapping with a *key* entry (``{"nodes": [...]}``) is accepted too.
    """
    if source == "-":
        data = json.load(sys.stdin)
    else:
        data = json.loads(Path(source).read_text(encoding="utf-8"))
    if isinstance(data, dict) and key in data:
        data = data[key]
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON list of {key}, got {type(data).__name__}")
    return data


def _build_orchestrator(args: argparse.Namespace) -> Any:
    from tree_of_thoughts.infrastructure.config import (
        PolicyConfig,
        StoreConfig,
        load_config_file,
    )
    from tree_of_thoughts.infrastructure.store import create_store
    from tree_of_thoughts.services.agent_verification import SessionLogVerifier
    from tree_of_thoughts.services.orchestrator import InvestigationOrchestrator

    config = load_config_file(args.config) if args.config else {}
    policy = config.get("policy") or PolicyConfig()
    store_config = config.get("store") or StoreConfig()
    persist_dir = (
        args.persist_dir
        or os.environ.get(PERSIST_DIR_ENV)
        or store_config.persist_dir
    )
    store = create_store(StoreConfig(backend="json", persist_dir=persist_dir))
    verifier = SessionLogVerifier(args.verify_agents) if args.verify_agents else None
    return InvestigationOrchestrator(store, config=policy, verifier=verifier)


def _emit(args: argparse.Namespace, response: Any, render: Any) -> int:
    """Print *response* in the requested format.  Exit code 1 on rejection."""
    if args.format == "json":
        print(json.dumps(response.to_dict(), indent=2))
    else:
        render(response)
    status = getattr(response, "status", None)
    return 1 if status is not None and status.value == "REJECTED" else 0


def _dashboard() -> Any:
    from tree_of_thoughts.presentation.console import ConsoleDashboard

    return ConsoleDashboard(file=sys.stdout)


# =========================================================================
# Subcommand handlers
# =========================================================================

def _cmd_start(args: argparse.Namespace) -> int:
    response = _build_orchestrator(args).start(args.query, min_roots=args.min_roots)
    return _emit(args, response, _dashboard().print_start)


def _cmd_propose(args: argparse.Namespace) -> int:
    nodes = _read_items(args.nodes, "nodes")
    response = _build_orchestrator(args).propose(args.session_id, nodes)
    return _emit(args, response, _dashboard().print_response)


def _cmd_commit(args: argparse.Namespace) -> int:
    results = _read_items(args.results, "results")
    response = _build_orchestrator(args).commit(args.session_id, results)
    return _emit(args, response, _dashboard().print_response)


def _cmd_reclassify(args: argparse.Namespace) -> int:
    response = _build_orchestrator(args).reclassify(
        args.session_id, args.node_id, args.new_state
    )
    return _emit(args, response, _dashboard().print_response)


def _cmd_status(args: argparse.Namespace) -> int:
    orchestrator = _build_orchestrator(args)
    response = orchestrator.status(args.session_id)
    if args.dot:
        print(response.dot)
        return 0 if response.status.value == "OK" else 1

    def render(resp: Any) -> None:
        dashboard = _dashboard()
        dashboard.print_status(resp)
        if resp.status.value == "OK":
            dashboard.print_nodes(orchestrator.store.load(args.session_id))

    return _emit(args, response, render)


def _cmd_end(args: argparse.Namespace) -> int:
    response = _build_orchestrator(args).end(args.session_id)
    return _emit(args, response, _dashboard().print_end)


def _cmd_list(args: argparse.Namespace) -> int:
    ids = _build_orchestrator(args).store.list_ids()
    if args.format == "json":
        print(json.dumps(ids))
    else:
        for session_id in ids:
            print(session_id)
    return 0


# =========================================================================
# Main entry point
# =========================================================================

def main(argv: list[str] | None = None) -> None:
    """CLI entry point.

    Parameters
    ----------
    argv:
        Command-line arguments.  Defaults to ``sys.argv[1:]``.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from tree_of_thoughts import __version__
        print(f"tot {__version__}")
        sys.exit(0)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    handlers: dict[str, Any] = {
        "start": _cmd_start,
        "propose": _cmd_propose,
        "commit": _cmd_commit,
        "reclassify": _cmd_reclassify,
        "status": _cmd_status,
        "end": _cmd_end,
        "list": _cmd_list,
    }

    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        exit_code = handler(args)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        exit_code = 130
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)
