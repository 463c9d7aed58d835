"""
Parallel forum export migration.

Architecture:
    [Worker-1] -> Read + extract page -> write records --\
    [Worker-2] -> Read + extract page -> write records ---> [DatabaseSink] (one lock, one connection)
    [Worker-3] -> Read + extract page -> write records --/
                         |
                         v
                 [ResolutionTable] (posts waiting for their topic)

Workers parse in parallel and write through the shared sink. Posts on pages
that don't name their topic are resolved through the table, possibly by a
topic found in another file later. Once every file is done, posts still
waiting are written with the sentinel topic ID and the sink is closed.
"""
import itertools
import signal
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from punparse.config import clear_run_id, get_logger, set_run_id, settings
from punparse.extraction.document import DocumentExtractor, ExtractedItem
from punparse.models import (
    DerivedKeyConflictError,
    DocumentLoadError,
    MalformedRecordError,
    NotApplicableError,
    Post,
    Record,
    StorageError,
    Topic,
)
from punparse.storage.sink import DatabaseSink
from punparse.utils import discover_files
from punparse.ingestion.progress import LoggingProgress, ProgressReporter
from punparse.ingestion.resolution import ResolutionTable

logger = get_logger(__name__)

UNRESOLVED_ITEM_NAME = "unresolved posts"


class RecordSink(Protocol):
    def insert(self, record: Record) -> bool:
        ...

    def close(self) -> None:
        ...


class RecordExtractor(Protocol):
    def extract(self, html: bytes) -> List[ExtractedItem]:
        ...


@dataclass
class IngestionConfig:
    """Configuration for one migration run. Unset values come from settings."""
    num_workers: Optional[int] = None
    max_pending_files: Optional[int] = None
    append: bool = False
    date_format: Optional[str] = None
    table_prefix: Optional[str] = None
    sentinel_topic_id: Optional[int] = None

    def __post_init__(self):
        if self.num_workers is None:
            self.num_workers = settings.num_workers
        if self.max_pending_files is None:
            self.max_pending_files = settings.max_pending_files
        if self.date_format is None:
            self.date_format = settings.date_format
        if self.table_prefix is None:
            self.table_prefix = settings.table_prefix
        if self.sentinel_topic_id is None:
            self.sentinel_topic_id = settings.sentinel_topic_id
        if self.num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        if self.max_pending_files < 1:
            raise ValueError("max_pending_files must be at least 1")


@dataclass
class IngestionResult:
    """Result of a migration run."""
    total_files: int
    processed: int
    failed: int
    records_written: int
    records_skipped: int
    deferred_posts: int
    flushed_with_sentinel: int
    duration_seconds: float
    run_id: Optional[str] = None
    stopped: bool = False
    errors: List[dict] = field(default_factory=list)


class FileTaskState(str, Enum):
    READING = "reading"
    EXTRACTING = "extracting"
    WRITING = "writing"
    DEFERRING = "deferring"
    REPORTING = "reporting"
    DONE = "done"


@dataclass
class FileOutcome:
    """What happened to one file. Owned by the worker that processes it."""
    name: str
    state: FileTaskState = FileTaskState.READING
    written: int = 0
    skipped: int = 0
    deferred: int = 0
    errors: List[str] = field(default_factory=list)

    def advance(self, state: FileTaskState) -> None:
        self.state = state
        logger.debug(f"{self.name}: {state.value}")


class IngestionScheduler:
    """Runs one task per file on a bounded thread pool.

    Each task reads a file, extracts its records, writes the self-contained
    ones, and hands posts without a topic to the resolution table. The sink
    and the table are the only state shared between tasks.
    """

    def __init__(
        self,
        sink: RecordSink,
        extractor: Optional[RecordExtractor] = None,
        reporter: Optional[ProgressReporter] = None,
        config: Optional[IngestionConfig] = None,
        table: Optional[ResolutionTable] = None,
        root: Optional[Path] = None,
    ):
        self.config = config or IngestionConfig()
        self.sink = sink
        self.extractor = extractor or DocumentExtractor(self.config.date_format)
        self.reporter = reporter or LoggingProgress()
        self.table = table or ResolutionTable()
        self.root = root
        self._stop = threading.Event()
        self._worker_ids = itertools.count(1)
        self._ran = False

    # ========================================================================
    # Control
    # ========================================================================

    def request_stop(self) -> None:
        """Submit no further files. Running and queued files still finish,
        and the final flush still runs."""
        if not self._stop.is_set():
            logger.info("Stop requested, finishing files already submitted...")
        self._stop.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def run(self, files: Sequence[Path], worker_count: Optional[int] = None) -> IngestionResult:
        """Migrate every file, flush unresolved posts, close the sink.

        Args:
            files: Export files, in submission order
            worker_count: Threads to use (defaults to config.num_workers)

        Returns:
            IngestionResult with statistics and per-file errors
        """
        if self._ran:
            raise RuntimeError("IngestionScheduler.run can only be called once")
        self._ran = True

        workers = worker_count or self.config.num_workers
        run_id = uuid.uuid4().hex[:8]
        set_run_id(run_id)

        logger.info("=" * 60)
        logger.info("FORUM EXPORT MIGRATION")
        logger.info("=" * 60)
        logger.info(f"Files:   {len(files)}")
        logger.info(f"Workers: {workers} (max {self.config.max_pending_files} files in flight)")
        logger.info("=" * 60)

        start_time = time.time()
        stats: Dict[str, Any] = {
            'processed': 0,
            'failed': 0,
            'written': 0,
            'skipped': 0,
            'deferred': 0,
            'errors': [],
        }

        try:
            self._run_pool(files, workers, stats)
            flush_outcome, flushed = self._final_flush()
            self._collect(flush_outcome, stats, count_file=False)
        finally:
            self.sink.close()

        elapsed = time.time() - start_time
        result = IngestionResult(
            total_files=len(files),
            processed=stats['processed'],
            failed=stats['failed'],
            records_written=stats['written'],
            records_skipped=stats['skipped'],
            deferred_posts=stats['deferred'],
            flushed_with_sentinel=flushed,
            duration_seconds=elapsed,
            run_id=run_id,
            stopped=self._stop.is_set(),
            errors=stats['errors'],
        )
        self._log_summary(result)
        return result

    # ========================================================================
    # Pool
    # ========================================================================

    def _run_pool(self, files: Sequence[Path], workers: int, stats: Dict[str, Any]) -> None:
        # Bounds submitted-but-unfinished tasks so queued work stays small
        slots = threading.BoundedSemaphore(self.config.max_pending_files)
        futures: List[Future] = []

        with ThreadPoolExecutor(max_workers=workers, initializer=self._name_worker) as pool:
            for path in files:
                if not self._acquire_slot(slots):
                    logger.info(f"Stopped after submitting {len(futures)} of {len(files)} files")
                    break
                future = pool.submit(self._process_file, path)
                future.add_done_callback(lambda _: slots.release())
                futures.append(future)

            for future in as_completed(futures):
                try:
                    outcome = future.result()
                except Exception as e:
                    logger.exception(f"Unexpected error in task: {e}")
                    stats['failed'] += 1
                    stats['errors'].append({'file': 'unknown', 'error': str(e)})
                    continue
                self._collect(outcome, stats)

    def _acquire_slot(self, slots: threading.BoundedSemaphore) -> bool:
        # Short waits keep the main thread responsive to SIGINT
        while not self._stop.is_set():
            if slots.acquire(timeout=0.2):
                return True
        return False

    def _name_worker(self) -> None:
        threading.current_thread().name = f"Worker-{next(self._worker_ids)}"

    # ========================================================================
    # Per-file task
    # ========================================================================

    def _item_name(self, path: Path) -> str:
        if self.root is not None:
            try:
                return str(path.relative_to(self.root))
            except ValueError:
                pass
        return str(path)

    def _process_file(self, path: Path) -> FileOutcome:
        outcome = FileOutcome(name=self._item_name(path))

        try:
            html = path.read_bytes()
        except OSError as e:
            logger.warning(f"Couldn't read {path}: {e}")
            outcome.errors.append("Couldn't read file.")
            self._report(outcome)
            return outcome

        outcome.advance(FileTaskState.EXTRACTING)
        try:
            items = self.extractor.extract(html)
        except NotApplicableError as e:
            logger.debug(f"Nothing to migrate in {outcome.name}: {e}")
            items = []
        except DocumentLoadError as e:
            logger.warning(f"Couldn't parse {outcome.name}: {e}")
            outcome.errors.append("Couldn't get data.")
            items = []

        outcome.advance(FileTaskState.WRITING)
        pending: List[Post] = []
        for item in items:
            if isinstance(item, MalformedRecordError):
                outcome.errors.append(f"Error in input data: {item}")
            elif isinstance(item, Post) and item.is_pending:
                pending.append(item)
            else:
                self._write(item, outcome)
                if isinstance(item, Topic):
                    self._resolve_topic(item, outcome)

        if pending:
            outcome.advance(FileTaskState.DEFERRING)
            self._defer(pending, outcome)

        self._report(outcome)
        return outcome

    def _write(self, record: Record, outcome: FileOutcome) -> None:
        try:
            if self.sink.insert(record):
                outcome.written += 1
            else:
                outcome.skipped += 1
        except StorageError as e:
            outcome.errors.append(f"SQL error: {e}")
        except Exception as e:
            # Write functions given to the resolution table must not raise
            logger.exception(f"Unexpected error writing to {record.TABLE} from {outcome.name}: {e}")
            outcome.errors.append(f"Couldn't write record: {e}")

    def _post_writer(self, outcome: FileOutcome) -> Callable[[Post, int], None]:
        def write(post: Post, topic_id: int) -> None:
            self._write(post.with_topic(topic_id), outcome)
        return write

    def _resolve_topic(self, topic: Topic, outcome: FileOutcome) -> None:
        # Posts flushed here count towards the file whose topic resolved them
        try:
            flushed = self.table.resolve_and_flush(topic.last_post_id, topic.id, self._post_writer(outcome))
        except DerivedKeyConflictError as e:
            outcome.errors.append(f"Error in input data: {e}")
            return
        if flushed:
            logger.debug(f"Topic {topic.id} from {outcome.name} resolved {flushed} waiting posts")

    def _defer(self, posts: List[Post], outcome: FileOutcome) -> None:
        write = self._post_writer(outcome)

        # Fast path: the topic is usually known already
        for post in reversed(posts):
            topic_id = self.table.try_resolve(post.id)
            if topic_id is not None:
                for p in posts:
                    write(p, topic_id)
                return

        if not self.table.file_if_unresolved(posts, write):
            outcome.deferred += len(posts)
            logger.debug(f"{len(posts)} posts from {outcome.name} wait for their topic")

    def _report(self, outcome: FileOutcome) -> None:
        outcome.advance(FileTaskState.REPORTING)
        self.reporter.report(outcome.name, outcome.errors)
        outcome.advance(FileTaskState.DONE)

    # ========================================================================
    # End of run
    # ========================================================================

    def _final_flush(self) -> tuple[FileOutcome, int]:
        outcome = FileOutcome(name=UNRESOLVED_ITEM_NAME, state=FileTaskState.WRITING)
        flushed = self.table.flush_all_remaining(self.config.sentinel_topic_id, self._post_writer(outcome))
        for error in outcome.errors:
            logger.error(f"{UNRESOLVED_ITEM_NAME}: {error}")
        outcome.state = FileTaskState.DONE
        return outcome, flushed

    @staticmethod
    def _collect(outcome: FileOutcome, stats: Dict[str, Any], count_file: bool = True) -> None:
        if count_file:
            if outcome.errors:
                stats['failed'] += 1
            else:
                stats['processed'] += 1
        stats['written'] += outcome.written
        stats['skipped'] += outcome.skipped
        stats['deferred'] += outcome.deferred
        for error in outcome.errors:
            stats['errors'].append({'file': outcome.name, 'error': error})

    @staticmethod
    def _log_summary(result: IngestionResult) -> None:
        logger.info("")
        logger.info("=" * 60)
        logger.info("MIGRATION STOPPED" if result.stopped else "MIGRATION COMPLETE")
        logger.info("=" * 60)
        logger.info(f"Total files:     {result.total_files}")
        logger.info(f"Processed:       {result.processed}")
        logger.info(f"Failed:          {result.failed}")
        logger.info(f"Records written: {result.records_written}")
        logger.info(f"Already present: {result.records_skipped}")
        logger.info(f"Deferred posts:  {result.deferred_posts}")
        logger.info(f"Without topic:   {result.flushed_with_sentinel}")
        logger.info(f"Time:            {result.duration_seconds:.1f} seconds")
        logger.info("=" * 60)


def migrate_forum_export(
    root: Path,
    database_url: str,
    config: Optional[IngestionConfig] = None,
    reporter: Optional[ProgressReporter] = None,
    files: Optional[List[Path]] = None,
) -> IngestionResult:
    """Main entry point: migrate an export directory into a database.

    Args:
        root: Directory containing the exported pages
        database_url: Destination database URL
        config: Configuration options (uses settings if None)
        reporter: Progress reporter (logs errors if None)
        files: Files to migrate, if already discovered under root

    Returns:
        IngestionResult with statistics

    Raises:
        IngestionSetupError: If root can't be listed
        SinkConnectionError: If the database can't be reached
        StorageError: If the schema can't be created
    """
    if config is None:
        config = IngestionConfig()
    if files is None:
        files = discover_files(root)

    sink = DatabaseSink.connect(database_url, config.table_prefix)
    if config.append:
        logger.info("Append mode: keeping existing tables and rows")
    else:
        try:
            sink.provision_schema()
        except StorageError:
            sink.close()
            raise

    scheduler = IngestionScheduler(sink, reporter=reporter, config=config, root=root)

    # First Ctrl+C stops submitting files; a second one interrupts
    handler_installed = threading.current_thread() is threading.main_thread()
    original_sigint = signal.getsignal(signal.SIGINT)

    def stop_handler(signum, frame):
        if scheduler.stop_requested:
            signal.signal(signal.SIGINT, original_sigint)
            raise KeyboardInterrupt
        scheduler.request_stop()

    if handler_installed:
        signal.signal(signal.SIGINT, stop_handler)

    try:
        return scheduler.run(files)
    finally:
        if handler_installed:
            signal.signal(signal.SIGINT, original_sigint)
        clear_run_id()
