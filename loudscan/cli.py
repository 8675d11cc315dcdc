"""
loudscan CLI - Argument parsing and dispatch.

Responsibilities:
- Argument parsing
- Building settings, requests and the default chain
- Printing outcome documents (stdout) and errors (stderr)
- Exit codes

Exit codes:
    0  nothing flagged
    1  usage/configuration error, or a request where no candidate could be
       analyzed
    2  at least one request flagged

Forbidden:
- No scanning logic (delegated to worker / ingest)
"""

import argparse
import sys
import uuid
from pathlib import Path

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FLAGGED = 2


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    from loudscan.config import (
        DEFAULT_CHAIN_TIMEOUT,
        DEFAULT_MAX_CANDIDATES,
        DEFAULT_STRIKE_PERCENT,
        DEFAULT_THRESHOLD,
    )

    parser = argparse.ArgumentParser(
        prog="loudscan",
        description="loudscan command-line interface.",
    )

    subparsers = parser.add_subparsers(dest="command")

    # scan subcommand
    scan_parser = subparsers.add_parser(
        "scan",
        help="Scan media files for sustained loudness.",
        description=(
            "Scan media files for sustained loudness.\n\n"
            "Each file is piped through the analysis chain (ffmpeg ebur128 by default)\n"
            "and flagged when a single run of loud samples covers at least the strike\n"
            "percentage of its length. Outcome documents are printed as JSON."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    scan_parser.add_argument("files", metavar="PATH", nargs="+", help="Media files to scan, in order.")
    scan_parser.add_argument(
        "--threshold",
        type=float,
        default=DEFAULT_THRESHOLD,
        help=f"Loudness threshold in LU, either sign (default: {DEFAULT_THRESHOLD:g}).",
    )
    scan_parser.add_argument(
        "--strike-percent",
        type=float,
        default=DEFAULT_STRIKE_PERCENT,
        help=f"Percent of the media a loud run must cover (default: {DEFAULT_STRIKE_PERCENT:g}).",
    )
    scan_parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_CHAIN_TIMEOUT,
        help=f"Seconds allowed per file (default: {DEFAULT_CHAIN_TIMEOUT:g}).",
    )
    scan_parser.add_argument(
        "--max-candidates",
        type=int,
        default=DEFAULT_MAX_CANDIDATES,
        help=f"Maximum files per request; extra files are ignored (default: {DEFAULT_MAX_CANDIDATES}).",
    )
    scan_parser.add_argument(
        "--analyze-partial",
        action="store_true",
        help="Analyze whatever output a failing chain produced before it failed.",
    )
    scan_parser.add_argument(
        "--separate",
        action="store_true",
        help="Scan every file as its own request through the worker queue.",
    )
    scan_parser.add_argument("--workers", type=int, help="Worker loops for --separate (env: LOUDSCAN_WORKERS).")
    scan_parser.add_argument(
        "--queue-capacity", type=int, help="Queue capacity for --separate (env: LOUDSCAN_QUEUE_CAPACITY)."
    )
    scan_parser.add_argument("--request-id", metavar="ID", help="Request identifier (default: random).")
    _add_tool_arguments(scan_parser)
    _add_logging_arguments(scan_parser)

    # check-tools subcommand
    tools_parser = subparsers.add_parser(
        "check-tools",
        help="Verify the external analysis tools are usable.",
    )
    _add_tool_arguments(tools_parser)
    _add_logging_arguments(tools_parser)

    return parser


def _add_tool_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--ffmpeg", metavar="PATH", help="ffmpeg executable (env: LOUDSCAN_FFMPEG).")
    parser.add_argument(
        "--qtfs", metavar="PATH", help="QuickTime fast-start executable run before ffmpeg (env: LOUDSCAN_QTFS)."
    )


def _add_logging_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--log-level", metavar="LEVEL", help="Log level (env: LOUDSCAN_LOG_LEVEL).")
    parser.add_argument("--log-file", metavar="PATH", type=Path, help="Also write logs to this file.")


def _load_config(args: argparse.Namespace):
    """Environment config with command-line overrides applied."""
    from dataclasses import replace

    from loudscan.config import ScannerConfig
    from loudscan.logging_config import setup_logging

    config = ScannerConfig.from_env()
    overrides = {
        "ffmpeg_path": args.ffmpeg,
        "qtfs_path": args.qtfs,
        "log_level": args.log_level.upper() if args.log_level else None,
        "worker_count": getattr(args, "workers", None),
        "queue_capacity": getattr(args, "queue_capacity", None),
    }
    config = replace(config, **{k: v for k, v in overrides.items() if v is not None})
    setup_logging(config.log_level, args.log_file)
    return config


def cmd_scan(args: argparse.Namespace) -> int:
    """
    Handle the 'scan' subcommand.

    Returns exit code.
    """
    from loudscan.config import ScanSettings
    from loudscan.contracts import FAILED, CollectingSink, build_request
    from loudscan.errors import ValidationError
    from loudscan.ingest import IngestQueue
    from loudscan.media import candidate_from_path
    from loudscan.tools import default_chain
    from loudscan.utils import serialize_json
    from loudscan.worker import PipelineWorker

    paths = [Path(p) for p in args.files]
    for path in paths:
        if not path.is_file():
            print(f"Error: Input file not found: {path}", file=sys.stderr)
            return EXIT_ERROR

    try:
        config = _load_config(args)
        settings = ScanSettings.from_user(
            loudness_threshold=args.threshold,
            strike_percent=args.strike_percent,
            chain_timeout=args.timeout,
            max_candidates=args.max_candidates,
            analyze_partial=args.analyze_partial,
        )
        chain = default_chain(config)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    sink = CollectingSink()
    worker = PipelineWorker(chain, sink)
    request_id = args.request_id or str(uuid.uuid4())
    candidates = [candidate_from_path(path) for path in paths]

    dropped = 0
    if not args.separate:
        if len(candidates) > settings.max_candidates:
            print(
                f"Warning: scanning only the first {settings.max_candidates} of {len(candidates)} files",
                file=sys.stderr,
            )
        worker.process(build_request(request_id, candidates, settings))
        outcomes = sink.outcomes
    else:
        order = {}
        # The CLI always runs a dedicated pool
        with IngestQueue(worker, capacity=config.queue_capacity, worker_count=config.worker_count) as ingest:
            for index, candidate in enumerate(candidates):
                request = build_request(f"{request_id}-{index}", [candidate], settings)
                order[request.request_id] = index
                if not ingest.submit(request):
                    print(f"Warning: queue full, dropped {candidate.name}", file=sys.stderr)
                    dropped += 1
        outcomes = sorted(sink.outcomes, key=lambda o: order[o.request_id])

    for outcome in outcomes:
        print(serialize_json(outcome.to_dict()), end="")

    if any(outcome.flagged for outcome in outcomes):
        return EXIT_FLAGGED
    if dropped or any(outcome.status == FAILED for outcome in outcomes):
        return EXIT_ERROR
    return EXIT_OK


def cmd_check_tools(args: argparse.Namespace) -> int:
    """
    Handle the 'check-tools' subcommand.

    Prints one line per tool; returns 1 if any tool is unusable.
    """
    from loudscan.errors import ValidationError
    from loudscan.tools import check_tools

    try:
        config = _load_config(args)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    exit_code = EXIT_OK
    for status in check_tools(config):
        if status.ok:
            print(f"{status.name}: OK ({status.path}) {status.version}")
        else:
            print(f"{status.name}: UNUSABLE ({status.path}) {status.error}")
            exit_code = EXIT_ERROR
    return exit_code


def main() -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "scan":
        sys.exit(cmd_scan(args))

    if args.command == "check-tools":
        sys.exit(cmd_check_tools(args))
