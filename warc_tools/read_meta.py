import argparse
import logging
import sys
from typing import List, Optional, TextIO

from warc_tools.config import DEFAULT_META_PATH
from warc_tools.detect_script import setup_logging
from warc_tools.errors import WarcToolsError
from warc_tools.metadata import GroupedWriter, ReferenceSet, correlate
from warc_tools.profiling import profiled
from warc_tools.records import open_stream

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Find the container offsets of HTML responses for the given record IDs"
    )
    parser.add_argument("--ids", type=str, default=None, help="File of record IDs, one per line (default: stdin)")
    parser.add_argument("--meta", type=str, nargs="+", default=[DEFAULT_META_PATH],
                        help="WAT metadata file(s); .gz files are decompressed")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar on stderr")
    parser.add_argument("--cpuprofile", type=str, default="", help="write cpu profile to file")
    parser.add_argument("--memprofile", type=str, default="", help="write memory profile to this file")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def read_references(path: Optional[str], stdin: Optional[TextIO] = None) -> ReferenceSet:
    if path:
        with open(path, "r", encoding="utf-8") as f:
            return ReferenceSet.from_stream(f)
    return ReferenceSet.from_stream(stdin if stdin is not None else sys.stdin)


def main(
        argv: Optional[List[str]] = None,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    out = stdout if stdout is not None else sys.stdout

    try:
        with profiled(args.cpuprofile, args.memprofile):
            references = read_references(args.ids, stdin)
            logger.info("Found %d ids", len(references))

            # One writer for every file so grouping carries across them
            writer = GroupedWriter(out)
            for meta_path in args.meta:
                logger.info("Reading %s", meta_path)
                with open_stream(meta_path) as stream:
                    for item in correlate(stream, references, progress=args.progress):
                        writer.write(item)
    except (WarcToolsError, OSError) as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1

    out.flush()
    logger.info("Wrote %d offsets", writer.count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
