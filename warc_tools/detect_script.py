import argparse
import logging
import random
import sys
import time
from typing import List, Optional, TextIO

from warc_tools.config import (
    DEFAULT_MAX_PENDING,
    DEFAULT_PRESET,
    DEFAULT_WORKERS,
    PRESETS,
    resolve_chars_path,
)
from warc_tools.dispatch import Dispatcher
from warc_tools.errors import WarcToolsError
from warc_tools.profiling import profiled
from warc_tools.records import open_stream
from warc_tools.script_classifier import SAMPLING_MODES, ScriptClassifier

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Print the records of a WARC stream that are mostly written in the target script"
    )
    parser.add_argument("--preset", choices=sorted(PRESETS), default=DEFAULT_PRESET,
                        help="Tuned sampling/threshold combination")
    parser.add_argument("--chars", type=str, default=None,
                        help="Target character file (default: $WARC_TOOLS_DIR/detect-chinese/ordered_characters)")
    parser.add_argument("--input", type=str, default=None, help="WARC file to read (default: stdin)")
    parser.add_argument("--threshold", type=float, default=None, help="Override the preset match threshold")
    parser.add_argument("--sample_size", "--sample-size", type=int, default=None,
                        help="Override the preset sample budget")
    parser.add_argument("--sampling", choices=SAMPLING_MODES, default=None, help="Override the preset sampling mode")
    parser.add_argument("--print_body", "--print-body", action="store_true", default=None,
                        help="Print matching bodies instead of record IDs")
    parser.add_argument("--workers", type=int, default=DEFAULT_WORKERS, help="Number of classification workers")
    parser.add_argument("--max_pending", "--max-pending", type=int, default=DEFAULT_MAX_PENDING,
                        help="Maximum records waiting for a worker")
    parser.add_argument("--processes", action="store_true", help="Use worker processes instead of threads")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the sampling random source")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar on stderr")
    parser.add_argument("--cpuprofile", type=str, default="", help="write cpu profile to file")
    parser.add_argument("--memprofile", type=str, default="", help="write memory profile to this file")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def resolve_settings(args: argparse.Namespace) -> dict:
    """Start from the preset and apply any explicit overrides."""
    settings = dict(PRESETS[args.preset])
    for key in ("threshold", "sample_size", "sampling", "print_body"):
        value = getattr(args, key)
        if value is not None:
            settings[key] = value
    return settings


def main(argv: Optional[List[str]] = None, stdout: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    out = stdout if stdout is not None else sys.stdout

    settings = resolve_settings(args)
    logger.debug("Settings: %s", settings)

    start_time = time.time()
    try:
        with profiled(args.cpuprofile, args.memprofile):
            classifier = ScriptClassifier.from_file(
                resolve_chars_path(args.chars),
                threshold=settings["threshold"],
                sample_size=settings["sample_size"],
                sampling=settings["sampling"],
                rng=random.Random(args.seed) if args.seed is not None else None,
            )
            dispatcher = Dispatcher(
                classifier,
                out,
                print_body=settings["print_body"],
                workers=args.workers,
                max_pending=args.max_pending,
                use_processes=args.processes,
                progress=args.progress,
            )
            with open_stream(args.input) as stream:
                stats = dispatcher.run(stream)
    except (WarcToolsError, OSError, ValueError) as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1

    out.flush()
    logger.info(
        "Done: %d records, %d matches in %.2f seconds",
        stats.records, stats.matches, time.time() - start_time,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
