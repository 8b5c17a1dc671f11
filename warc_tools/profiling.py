import cProfile
import io
import logging
import pstats
import tracemalloc
from contextlib import ExitStack, contextmanager
from typing import Optional

logger = logging.getLogger(__name__)


@contextmanager
def cpu_profile(path: Optional[str]):
    """Run the body under cProfile and dump the stats to `path` (no-op if path is empty)."""
    if not path:
        yield
        return

    profiler = cProfile.Profile()
    profiler.enable()
    try:
        yield
    finally:
        profiler.disable()
        profiler.dump_stats(path)
        logger.info("Wrote CPU profile to %s", path)

        if logger.isEnabledFor(logging.DEBUG):
            buf = io.StringIO()
            pstats.Stats(path, stream=buf).sort_stats("cumulative").print_stats(10)
            logger.debug("Top functions by cumulative time:\n%s", buf.getvalue())


@contextmanager
def memory_profile(path: Optional[str], top: int = 25):
    """Trace allocations in the body and write the `top` allocation sites to `path`."""
    if not path:
        yield
        return

    tracemalloc.start()
    try:
        yield
    finally:
        snapshot = tracemalloc.take_snapshot()
        current, peak = tracemalloc.get_traced_memory()
        tracemalloc.stop()

        with open(path, "w", encoding="utf-8") as f:
            f.write(f"current={current} peak={peak}\n")
            for stat in snapshot.statistics("lineno")[:top]:
                f.write(f"{stat}\n")
        logger.info("Wrote memory profile to %s (peak %.1f MiB)", path, peak / 2**20)


@contextmanager
def profiled(cpuprofile: Optional[str] = None, memprofile: Optional[str] = None):
    with ExitStack() as stack:
        stack.enter_context(cpu_profile(cpuprofile))
        stack.enter_context(memory_profile(memprofile))
        yield
