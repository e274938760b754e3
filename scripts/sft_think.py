#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.11"
# dependencies = ["fastmcp>=2.10", "pydantic>=2.0.0"]
# ///
"""
Sequential thinking — in-memory thought ledger with revisions and branches.

Architecture:
  ThoughtLedger → append-only history + branch index, one per process
  No persistence: the ledger lives as long as the server process.
  Totals auto-extend when a thought number passes the declared estimate.

Usage:
  sft_think.py replay thoughts.jsonl             # Feed JSON Lines through a fresh ledger
  cat thoughts.jsonl | sft_think.py replay --show  # Same, render each thought on stderr
  sft_think.py schema                            # Input JSON Schema
  sft_think.py mcp-stdio                         # MCP server mode
"""

# =============================================================================
# EXPOSED — tools available via MCP
# =============================================================================

EXPOSED = ["sequentialthinking"]

# =============================================================================
# IMPORTS
# =============================================================================

import argparse
import json
import os
import sys
import threading
import time
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

# =============================================================================
# LOGGING
# =============================================================================
_LEVELS = {"TRACE": 5, "DEBUG": 10, "INFO": 20, "WARN": 30, "ERROR": 40, "FATAL": 50}
_THRESHOLD = _LEVELS.get(os.environ.get("SFB_LOG_LEVEL", "INFO").upper(), 20)
_LOG_DIR = os.environ.get("SFB_LOG_DIR", "")
_SCRIPT = Path(__file__).stem
_LOG = (
    Path(_LOG_DIR) / f"{_SCRIPT}_log.tsv"
    if _LOG_DIR
    else Path(__file__).parent / f"{_SCRIPT}_log.tsv"
)
_HEADER = "#timestamp\tscript\tlevel\tevent\tmessage\tdetail\tmetrics\ttrace\n"


def _log(
    level: str,
    event: str,
    msg: str,
    *,
    detail: str = "",
    metrics: str = "",
    trace: str = "",
):
    """Append TSV log line. Logging never crashes the main flow."""
    if _LEVELS.get(level, 20) < _THRESHOLD:
        return
    try:
        ts = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
        write_header = not _LOG.exists()
        with open(_LOG, "a") as f:
            if write_header:
                f.write(_HEADER)
            f.write(
                f"{ts}\t{_SCRIPT}\t{level}\t{event}\t{msg}\t{detail}\t{metrics}\t{trace}\n"
            )
    except Exception:
        pass


# =============================================================================
# CONFIGURATION
# =============================================================================

CONFIG = {
    "version": "1.0.0",
    "server_name": "sequential-thinking",
    "echo_thoughts": os.environ.get("SFB_THINK_ECHO", "").lower() in {"1", "true", "yes"},
}

TOOL_DESCRIPTION = """Dynamic, reflective problem-solving through structured sequential thoughts.

Break a complex problem into a series of thoughts, each building on the ones
before it. Earlier thoughts can be revised, alternative paths can branch off
any prior thought, and the total estimate can grow as understanding deepens.

Good fits:
- Hunting security issues or bugs (walk through attack vectors)
- Weighing architectural decisions (compare tradeoffs one by one)
- Debugging (trace execution paths step by step)
- Planning multi-step changes (dependencies and ordering)
- Reviewing code with several interacting concerns

Each thought should be a complete, self-contained reasoning step. The ledger
keeps the full history, so revisions and branches never erase earlier steps.
"""


# =============================================================================
# MODELS
# =============================================================================


class ThoughtValidationError(ValueError):
    """Submission rejected before it reached the ledger."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "ThoughtValidationError":
        errors = exc.errors(include_url=False)
        parts = []
        for err in errors:
            loc = ".".join(str(p) for p in err["loc"]) or "input"
            parts.append(f"{loc}: {err['msg']}")
        return cls("; ".join(parts), errors)


class ThoughtInput(BaseModel):
    """Submission as it arrives at the boundary (camelCase keys)."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=True,
        extra="ignore",
    )

    thought: str = Field(
        min_length=1, description="The current thinking step, a complete reasoning unit"
    )
    thought_number: int = Field(
        ge=1, description="Sequence number of this thought (starts at 1)"
    )
    total_thoughts: int = Field(
        ge=1, description="Estimated total thoughts, may grow as complexity is found"
    )
    next_thought_needed: bool = Field(
        description="Whether another thought should follow this one"
    )
    is_revision: bool | None = Field(
        None, description="Whether this thought revises a previous one"
    )
    revises_thought: int | None = Field(
        None, ge=1, description="Thought number being revised"
    )
    branch_from_thought: int | None = Field(
        None, ge=1, description="Thought number this branch diverges from"
    )
    branch_id: str | None = Field(
        None, description="Branch label, e.g. 'security-analysis'"
    )


class ThoughtEntry(BaseModel):
    """A stored thought. Frozen: the ledger never edits history."""

    model_config = ConfigDict(frozen=True)

    thought: str
    thought_number: int
    total_thoughts: int
    is_revision: bool = False
    revises_thought: int | None = None
    branch_from_thought: int | None = None
    branch_id: str | None = None
    needs_more_thoughts: bool

    @classmethod
    def from_input(cls, inp: ThoughtInput) -> "ThoughtEntry":
        """Build the stored form, extending the total to cover the thought number."""
        return cls(
            thought=inp.thought,
            thought_number=inp.thought_number,
            total_thoughts=max(inp.total_thoughts, inp.thought_number),
            is_revision=bool(inp.is_revision),
            revises_thought=inp.revises_thought,
            branch_from_thought=inp.branch_from_thought,
            branch_id=inp.branch_id or None,
            needs_more_thoughts=inp.next_thought_needed,
        )


class ProgressSummary(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    thought_number: int
    total_thoughts: int
    next_thought_needed: bool
    branches: list[str]
    thought_history_length: int

    def to_dict(self) -> dict:
        return self.model_dump(by_alias=True)


# =============================================================================
# LEDGER
# =============================================================================


class ThoughtLedger:
    """Append-only thought history with a branch index.

    One instance per host process; the MCP server and the replay command each
    build their own and hand it to the tool layer. Growth is unbounded.
    """

    def __init__(self):
        self._history: list[ThoughtEntry] = []
        self._branches: dict[str, list[ThoughtEntry]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def validate(entry: ThoughtInput | Mapping[str, Any]) -> ThoughtInput:
        if isinstance(entry, ThoughtInput):
            return entry
        try:
            return ThoughtInput.model_validate(entry)
        except ValidationError as e:
            raise ThoughtValidationError.from_pydantic(e) from e

    def record(
        self, entry: ThoughtInput | Mapping[str, Any]
    ) -> tuple[ThoughtEntry, ProgressSummary]:
        """Validate, normalize and append; return the stored entry and summary.

        Raises ThoughtValidationError before touching state.
        """
        stored = ThoughtEntry.from_input(self.validate(entry))
        with self._lock:
            self._history.append(stored)
            if stored.branch_id:
                self._branches.setdefault(stored.branch_id, []).append(stored)
            summary = ProgressSummary(
                thought_number=stored.thought_number,
                total_thoughts=stored.total_thoughts,
                next_thought_needed=stored.needs_more_thoughts,
                branches=list(self._branches),
                thought_history_length=len(self._history),
            )
        return stored, summary

    def submit(self, entry: ThoughtInput | Mapping[str, Any]) -> ProgressSummary:
        return self.record(entry)[1]

    def list_branches(self) -> list[str]:
        with self._lock:
            return list(self._branches)

    def history_length(self) -> int:
        with self._lock:
            return len(self._history)

    def history(self) -> tuple[ThoughtEntry, ...]:
        with self._lock:
            return tuple(self._history)

    def branch_entries(self, branch_id: str) -> tuple[ThoughtEntry, ...]:
        with self._lock:
            return tuple(self._branches.get(branch_id, ()))


# =============================================================================
# RENDERING
# =============================================================================


def _format_thought(entry: ThoughtEntry) -> str:
    """Box a thought for stderr display."""
    pos = f"{entry.thought_number}/{entry.total_thoughts}"
    if entry.is_revision:
        header = f"🔄 Revision {pos}"
        if entry.revises_thought:
            header += f" (revising thought {entry.revises_thought})"
    elif entry.branch_from_thought:
        header = f"🌿 Branch {pos} (from thought {entry.branch_from_thought}"
        header += f", ID: {entry.branch_id})" if entry.branch_id else ")"
    else:
        header = f"💭 Thought {pos}"

    lines = entry.thought.splitlines() or [""]
    width = max(len(header), *(len(line) for line in lines)) + 2
    border = "─" * width
    body = "\n".join(f"│ {line.ljust(width - 2)} │" for line in lines)
    return f"┌{border}┐\n│ {header.ljust(width - 2)} │\n├{border}┤\n{body}\n└{border}┘"


# =============================================================================
# IMPLEMENTATION
# =============================================================================


def _think_impl(
    ledger: ThoughtLedger, payload: ThoughtInput | Mapping[str, Any], echo: bool = False
) -> tuple[dict, dict]:
    """Submit one thought. MCP: sequentialthinking, CLI: replay (per line)."""
    start_ms = time.time() * 1000

    try:
        entry, summary = ledger.record(payload)
    except ThoughtValidationError as e:
        latency_ms = time.time() * 1000 - start_ms
        metrics = {"status": "error", "latency_ms": round(latency_ms, 2)}
        _log("WARN", "think_rejected", str(e), metrics=json.dumps(metrics))
        return {"status": "error", "message": str(e)}, metrics

    if echo:
        print(_format_thought(entry), file=sys.stderr)

    latency_ms = time.time() * 1000 - start_ms
    metrics = {"status": "success", "latency_ms": round(latency_ms, 2)}
    _log(
        "INFO",
        "think",
        f"#{entry.thought_number}/{entry.total_thoughts}",
        detail=f"branch={entry.branch_id or 'main'} revision={entry.is_revision} chars={len(entry.thought)}",
        metrics=json.dumps(metrics),
    )
    return summary.to_dict(), metrics


def _summary_impl(ledger: ThoughtLedger) -> dict:
    branches = ledger.list_branches()
    return {
        "branches": branches,
        "thoughtHistoryLength": ledger.history_length(),
        "branchSizes": {b: len(ledger.branch_entries(b)) for b in branches},
    }


def _replay_impl(
    lines: Iterable[str], ledger: ThoughtLedger | None = None, echo: bool = False
) -> tuple[dict, dict]:
    """Submit JSON Lines in order through one ledger. CLI: replay.

    Bad lines produce an error object and replay continues.
    """
    start_ms = time.time() * 1000
    ledger = ledger if ledger is not None else ThoughtLedger()

    results = []
    errors = 0
    for lineno, raw in enumerate(lines, 1):
        raw = raw.strip()
        if not raw:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            errors += 1
            _log("WARN", "replay_error", f"line {lineno}: {e.msg}")
            results.append(
                {"status": "error", "line": lineno, "message": f"Invalid JSON: {e.msg}"}
            )
            continue
        result, _ = _think_impl(ledger, payload, echo=echo)
        if result.get("status") == "error":
            errors += 1
            result = {"status": "error", "line": lineno, "message": result["message"]}
        results.append(result)

    summary = _summary_impl(ledger)
    latency_ms = time.time() * 1000 - start_ms
    metrics = {
        "status": "error" if errors else "success",
        "count": len(results),
        "errors": errors,
        "latency_ms": round(latency_ms, 2),
    }
    _log(
        "INFO",
        "replay",
        f"{len(results)} lines, {errors} rejected",
        metrics=json.dumps(metrics),
    )
    return {"results": results, "summary": summary}, metrics


# =============================================================================
# CLI INTERFACE
# =============================================================================


def main():
    parser = argparse.ArgumentParser(
        description="In-memory sequential thinking ledger with revisions and branches",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  sft_think.py replay session.jsonl
  sft_think.py replay session.jsonl --show
  echo '{"thought": "a", "thoughtNumber": 1, "totalThoughts": 2, "nextThoughtNeeded": true}' | sft_think.py replay
  sft_think.py schema
  sft_think.py mcp-stdio

SFB_THINK_ECHO=1 sft_think.py mcp-stdio renders every thought on stderr.
""",
    )
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {CONFIG['version']}"
    )
    sub = parser.add_subparsers(dest="command")

    # replay
    p_replay = sub.add_parser("replay", help="Submit JSON Lines through a fresh ledger")
    p_replay.add_argument(
        "file", nargs="?", default="", help="JSON Lines file ('-' or omit for stdin)"
    )
    p_replay.add_argument(
        "--show", action="store_true", help="Render accepted thoughts on stderr"
    )

    # schema
    sub.add_parser("schema", help="Print the thought input JSON Schema")

    # mcp-stdio
    sub.add_parser("mcp-stdio", help="Run as MCP stdio server")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "mcp-stdio":
        _run_mcp()
        return

    try:
        if args.command == "replay":
            if args.file and args.file != "-":
                lines = Path(args.file).read_text().splitlines()
            elif args.file == "-" or not sys.stdin.isatty():
                lines = sys.stdin.read().splitlines()
            else:
                raise ValueError("input required (FILE argument or stdin)")
            output, metrics = _replay_impl(lines, echo=args.show)
            print(json.dumps(output, indent=2))
            if metrics["status"] == "error":
                sys.exit(1)
        elif args.command == "schema":
            schema = ThoughtInput.model_json_schema(by_alias=True)
            print(json.dumps(schema, indent=2))
        else:
            parser.print_help()
            sys.exit(1)

    except Exception as e:
        _log("ERROR", "cli_error", str(e))
        print(json.dumps({"status": "error", "message": str(e)}), file=sys.stderr)
        sys.exit(1)


# =============================================================================
# FASTMCP SERVER
# =============================================================================


def _build_mcp(ledger: ThoughtLedger | None = None):
    """Create the FastMCP server bound to one ledger."""
    from fastmcp import FastMCP
    from fastmcp.exceptions import ToolError

    ledger = ledger if ledger is not None else ThoughtLedger()
    mcp = FastMCP(CONFIG["server_name"])

    @mcp.tool(description=TOOL_DESCRIPTION)
    def sequentialthinking(
        thought: Annotated[
            str, Field(strict=True, description="The current thinking step, a complete reasoning unit")
        ],
        thoughtNumber: Annotated[
            int, Field(ge=1, strict=True, description="Sequence number of this thought (starts at 1)")
        ],
        totalThoughts: Annotated[
            int,
            Field(ge=1, strict=True, description="Estimated total thoughts, may grow as complexity is found"),
        ],
        nextThoughtNeeded: Annotated[
            bool, Field(strict=True, description="Whether another thought should follow this one")
        ],
        isRevision: Annotated[
            bool, Field(strict=True, description="Whether this thought revises a previous one")
        ] = False,
        revisesThought: Annotated[
            int | None, Field(ge=1, strict=True, description="If isRevision, the thought number being revised")
        ] = None,
        branchFromThought: Annotated[
            int | None, Field(ge=1, strict=True, description="If branching, the thought number to branch from")
        ] = None,
        branchId: Annotated[
            str | None,
            Field(strict=True, description="Branch label, e.g. 'security-analysis' or 'perf-alternative'"),
        ] = None,
    ) -> str:
        payload = {
            "thought": thought,
            "thoughtNumber": thoughtNumber,
            "totalThoughts": totalThoughts,
            "nextThoughtNeeded": nextThoughtNeeded,
            "isRevision": isRevision,
            "revisesThought": revisesThought,
            "branchFromThought": branchFromThought,
            "branchId": branchId,
        }
        result, _ = _think_impl(ledger, payload, echo=CONFIG["echo_thoughts"])
        if result.get("status") == "error":
            raise ToolError(result["message"])
        return json.dumps(result, indent=2)

    return mcp


def _run_mcp():
    """Build and run the FastMCP server on stdio."""
    mcp = _build_mcp(ThoughtLedger())
    _log("INFO", "mcp_start", f"{CONFIG['server_name']} v{CONFIG['version']}")
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
