from __future__ import annotations

import logging
import os
import queue
import sys
import threading
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from functools import partial
from typing import BinaryIO, NamedTuple, Optional, TextIO

from tqdm import tqdm

from warc_tools.config import DEFAULT_MAX_PENDING, DEFAULT_WORKERS, RESULT_QUEUE_SIZE
from warc_tools.errors import FramingError
from warc_tools.records import RecordReader, WarcRecord
from warc_tools.script_classifier import ScriptClassifier

logger = logging.getLogger(__name__)


def classify_record(
        classifier: ScriptClassifier,
        record: WarcRecord,
        print_body: bool = False,
) -> Optional[str]:
    """
    The per-record task.

    Returns the text to print for a matching record (its ID, or its rebuilt
    body when `print_body` is set) and None for non-matches and skipped
    records.
    """
    text = record.text_body()
    if text is None:
        return None
    if not print_body and not record.record_id:
        raise FramingError("Record missing ID")
    if not classifier.is_match(text):
        return None
    return text if print_body else record.record_id


# --- Process pool support ---
# Worker processes get the classifier once, through the pool initializer,
# instead of pickling it with every record.
_worker_classifier: Optional[ScriptClassifier] = None
_worker_print_body = False


def init_worker(classifier: ScriptClassifier, print_body: bool):
    global _worker_classifier, _worker_print_body
    # Every worker unpickles the same random state; mix in the pid so draws differ
    classifier.rng.seed(classifier.rng.getrandbits(64) ^ os.getpid())
    _worker_classifier = classifier
    _worker_print_body = print_body


def classify_in_worker(record: WarcRecord) -> Optional[str]:
    return classify_record(_worker_classifier, record, _worker_print_body)


# --- Collector ---

class _Total(NamedTuple):
    count: int


class _Failure(NamedTuple):
    error: BaseException


class ResultCollector:
    """
    Gathers one result per dispatched task without knowing the task count up front.

    Results, task failures and the total announcement all travel through one
    bounded queue, in any order. The collector stops once the total is known
    and that many results have arrived. Non-empty results are written in
    arrival order until the first failure, task or write; later results are
    only counted.
    """

    def __init__(self, out: TextIO, *, blank_line_before: bool = False, queue_size: int = RESULT_QUEUE_SIZE):
        self.out = out
        self.blank_line_before = blank_line_before
        self.queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self.expected: Optional[int] = None
        self.received = 0
        self.matches = 0
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    # Producer side
    def put(self, result: Optional[str]):
        self.queue.put(result)

    def fail(self, error: BaseException):
        self.queue.put(_Failure(error))

    def announce(self, total: int):
        self.queue.put(_Total(total))

    # Consumer side
    def done(self) -> bool:
        return self.expected is not None and self.received == self.expected

    def run(self):
        while not self.done():
            item = self.queue.get()
            if isinstance(item, _Total):
                self.expected = item.count
                continue

            self.received += 1
            if isinstance(item, _Failure):
                if self.error is None:
                    self.error = item.error
            elif item and self.error is None:
                try:
                    self._emit(item)
                except Exception as error:
                    # Output stops here; the queue is still drained to the total
                    logger.error("Failed to write result: %s", error)
                    self.error = error

        logger.debug("Collector finished after %d results", self.received)

    def _emit(self, text: str):
        if self.blank_line_before:
            self.out.write("\n")
        self.out.write(f"{text}\n")
        self.matches += 1

    def start(self):
        self._thread = threading.Thread(target=self.run, name="result-collector", daemon=True)
        self._thread.start()

    def join(self):
        if self._thread is not None:
            self._thread.join()


# --- Dispatcher ---

class DispatchStats(NamedTuple):
    records: int
    matches: int


class Dispatcher:
    """
    Reads records sequentially and classifies each one on a bounded worker pool.

    At most `max_pending` tasks are in flight; the reader blocks once that many
    are outstanding. The first failure (a framing error in the stream or an
    exception inside a task) stops the run and is re-raised.
    """

    def __init__(
            self,
            classifier: ScriptClassifier,
            out: TextIO,
            *,
            print_body: bool = False,
            workers: int = DEFAULT_WORKERS,
            max_pending: int = DEFAULT_MAX_PENDING,
            use_processes: bool = False,
            queue_size: int = RESULT_QUEUE_SIZE,
            progress: bool = False,
    ):
        if workers < 1:
            raise ValueError(f"Invalid number of workers: {workers}")
        if max_pending < 1:
            raise ValueError(f"Invalid max pending: {max_pending}")

        self.classifier = classifier
        self.out = out
        self.print_body = print_body
        self.workers = workers
        self.max_pending = max_pending
        self.use_processes = use_processes
        self.queue_size = queue_size
        self.progress = progress

    def _make_executor(self) -> Executor:
        if self.use_processes:
            return ProcessPoolExecutor(
                max_workers=self.workers,
                initializer=init_worker,
                initargs=(self.classifier, self.print_body),
            )
        return ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="classify")

    def _task(self):
        if self.use_processes:
            return classify_in_worker
        return partial(classify_record, self.classifier, print_body=self.print_body)

    def run(self, stream: BinaryIO) -> DispatchStats:
        collector = ResultCollector(self.out, blank_line_before=self.print_body, queue_size=self.queue_size)
        collector.start()

        slots = threading.BoundedSemaphore(self.max_pending)

        def on_done(future: Future):
            slots.release()
            if future.cancelled():
                collector.put(None)
            elif future.exception() is not None:
                collector.fail(future.exception())
            else:
                collector.put(future.result())

        task = self._task()
        executor = self._make_executor()
        reader = RecordReader(stream)
        dispatched = 0
        try:
            for rec in tqdm(reader, desc="Classifying", unit="rec", disable=not self.progress, file=sys.stderr):
                if collector.error is not None:
                    break
                slots.acquire()
                future = executor.submit(task, rec)
                dispatched += 1
                future.add_done_callback(on_done)
        except BaseException:
            # Fail fast: drop queued work, let the collector drain what ran
            executor.shutdown(wait=True, cancel_futures=True)
            collector.announce(dispatched)
            collector.join()
            raise

        logger.info("Dispatched %d records", dispatched)
        if collector.error is not None:
            executor.shutdown(wait=True, cancel_futures=True)
        collector.announce(dispatched)
        collector.join()
        executor.shutdown(wait=True)

        if collector.error is not None:
            raise collector.error

        logger.info("Found %d matching records", collector.matches)
        return DispatchStats(records=dispatched, matches=collector.matches)
