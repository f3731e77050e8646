"""Mailbox polling runs and their scheduling."""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import func

from src.config import settings
from src.connectors.base import MessageRef, ProviderConnector
from src.connectors.registry import get_connector
from src.database.connection import get_db_session
from src.imaging.attachment_extractor import AttachmentExtractor
from src.imaging.classifier import ClassificationEngine
from src.imaging.document_filer import DocumentFiler
from src.imaging.errors import ConnectorError
from src.models.monitoring_config import (
    ACTION_MARK_READ,
    ACTION_NONE,
    MonitoringConfig,
    MonitoringSnapshot,
)
from src.models.poll_run_log import RUN_FAILURE, RUN_PARTIAL, RUN_SUCCESS, PollRunLog
from src.models.unindexed_item import SOURCE_EMAIL

logger = logging.getLogger(__name__)

RUN_SKIPPED = "skipped"


@dataclass
class PollSummary:
    """Counters of one polling run, returned to the trigger and written to the run log."""

    config_id: Optional[int]
    provider: str
    status: str = RUN_SUCCESS
    emails_found: int = 0
    emails_processed: int = 0
    emails_failed: int = 0
    pdfs_processed: int = 0
    indexed: int = 0
    unindexed: int = 0
    errors: int = 0
    message: str = ""

    def text(self) -> str:
        if self.message and self.status in (RUN_FAILURE, RUN_SKIPPED):
            return self.message
        return (f"{self.emails_found} email(s) found, {self.pdfs_processed} PDF(s) processed, "
                f"{self.indexed} indexed, {self.unindexed} unindexed, {self.errors} error(s)")

    def dict(self):
        return {**asdict(self), "summary": self.text()}


class PollingOrchestrator:
    """Runs one poll of a mailbox: authenticate, list, file every PDF, post-process, log.

    Messages and their attachments are handled one after another. Runs for
    the same config id are serialized; a run requested while another one
    for that config is in progress is skipped.
    """

    def __init__(self, filer: Optional[DocumentFiler] = None,
                 connector_factory: Callable[[str], ProviderConnector] = get_connector):
        self.filer = filer or DocumentFiler()
        self.connector_factory = connector_factory
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, config_id: int) -> asyncio.Lock:
        return self._locks.setdefault(config_id, asyncio.Lock())

    def is_running(self, config_id: int) -> bool:
        return self._lock_for(config_id).locked()

    def _skipped(self, config_id: int, provider: str = "") -> PollSummary:
        logger.info(f"Poll for config {config_id} already in progress, skipping")
        return PollSummary(config_id=config_id, provider=provider, status=RUN_SKIPPED,
                           message="A poll for this configuration is already running")

    async def run_config(self, config_id: int) -> PollSummary:
        """Load the config under the run lock and poll it."""
        lock = self._lock_for(config_id)
        if lock.locked():
            return self._skipped(config_id)

        async with lock:
            with get_db_session() as db:
                row = db.query(MonitoringConfig).filter(MonitoringConfig.id == config_id).first()
                config = row.snapshot() if row else None

            if config is None:
                logger.debug(f"Monitoring config {config_id} not found, nothing to do")
                return PollSummary(config_id=config_id, provider="",
                                   message="Imaging email monitoring is disabled or not configured")
            return await self._run(config)

    async def run(self, config: MonitoringSnapshot) -> PollSummary:
        """Poll using an already loaded config snapshot."""
        lock = self._lock_for(config.id)
        if lock.locked():
            return self._skipped(config.id, config.provider)

        async with lock:
            return await self._run(config)

    async def _run(self, config: MonitoringSnapshot) -> PollSummary:
        summary = PollSummary(config_id=config.id, provider=config.provider)

        if not config.is_enabled:
            logger.debug(f"Monitoring config {config.id} is disabled, nothing to do")
            summary.message = "Imaging email monitoring is disabled or not configured"
            return summary

        started_at = datetime.utcnow()
        logger.info(f"Imaging email poll started for config {config.id} ({config.provider})")

        if not config.imaging_bucket_id:
            return self._abort(config, summary, started_at, "No imaging bucket configured")

        try:
            connector = self.connector_factory(config.provider)
        except ValueError as e:
            return self._abort(config, summary, started_at, str(e))

        async with connector:
            try:
                token = await connector.authenticate(config)
            except ConnectorError as e:
                return self._abort(config, summary, started_at, f"Authentication failed: {e}")

            listed_at = datetime.utcnow()
            try:
                messages = await connector.list_candidate_messages(config, token)
            except ConnectorError as e:
                return self._abort(config, summary, started_at, f"Listing messages failed: {e}")

            summary.emails_found = len(messages)
            logger.info(f"Found {len(messages)} email(s) with attachments")

            with get_db_session() as db:
                engine = ClassificationEngine.from_catalog(db)

            extractor = AttachmentExtractor(connector)
            for message in messages:
                succeeded = await self._process_message(config, token, message, extractor, engine, summary)
                if succeeded:
                    summary.emails_processed += 1
                else:
                    summary.emails_failed += 1
                await self._post_process(connector, config, token, message, succeeded)

        summary.status = RUN_PARTIAL if summary.errors else RUN_SUCCESS
        if summary.errors:
            summary.message = f"{summary.errors} error(s) during processing"

        self._finish(config, summary, started_at, advance_cursor_to=listed_at)
        logger.info(f"Imaging email poll completed for config {config.id}: {summary.text()}")
        return summary

    async def _process_message(self, config: MonitoringSnapshot, token: str, message: MessageRef,
                               extractor: AttachmentExtractor, engine: ClassificationEngine,
                               summary: PollSummary) -> bool:
        try:
            pdfs = await extractor.extract(config, token, message)
        except Exception as e:
            logger.error(f"Error processing email {message.id}: {type(e).__name__}: {e}")
            summary.errors += 1
            return False

        succeeded = True
        for pdf in pdfs:
            try:
                result = await self.filer.process(
                    pdf.data,
                    pdf.filename,
                    bucket_id=config.imaging_bucket_id,
                    source_config_id=config.id,
                    source_type=SOURCE_EMAIL,
                    engine=engine,
                )
            except Exception as e:
                logger.error(f"Error processing PDF {pdf.filename} from email {message.id}: "
                             f"{type(e).__name__}: {e}")
                summary.errors += 1
                succeeded = False
                continue

            summary.pdfs_processed += 1
            if result.indexed:
                summary.indexed += 1
            else:
                summary.unindexed += 1

        return succeeded

    async def _post_process(self, connector: ProviderConnector, config: MonitoringSnapshot, token: str,
                            message: MessageRef, succeeded: bool):
        if succeeded:
            action = config.post_process_action or ACTION_MARK_READ
            folder = config.processed_folder_path or "Processed"
        else:
            action = config.post_process_action_on_failure or ACTION_NONE
            folder = config.failure_folder_path or "Failed"

        if action == ACTION_NONE:
            return

        try:
            await connector.apply_post_process(config, token, message, action, folder)
        except Exception as e:
            logger.warning(f"Post-process action '{action}' failed for email {message.id}: {e}")

    def _abort(self, config: MonitoringSnapshot, summary: PollSummary, started_at: datetime,
               reason: str) -> PollSummary:
        logger.error(f"Imaging email poll for config {config.id} aborted: {reason}")
        summary.status = RUN_FAILURE
        summary.message = reason
        self._finish(config, summary, started_at, advance_cursor_to=None)
        return summary

    def _finish(self, config: MonitoringSnapshot, summary: PollSummary, started_at: datetime,
                advance_cursor_to: Optional[datetime]):
        with get_db_session() as db:
            if advance_cursor_to is not None:
                db.query(MonitoringConfig).filter(MonitoringConfig.id == config.id).update(
                    {MonitoringConfig.last_check: advance_cursor_to}, synchronize_session=False
                )
            db.add(PollRunLog(
                config_id=config.id,
                provider=config.provider,
                status=summary.status,
                emails_found=summary.emails_found,
                emails_processed=summary.emails_processed,
                emails_failed=summary.emails_failed,
                pdfs_processed=summary.pdfs_processed,
                indexed_count=summary.indexed,
                unindexed_count=summary.unindexed,
                error_count=summary.errors,
                error_message=summary.message or None,
                started_at=started_at,
                finished_at=datetime.utcnow(),
            ))


def is_due(config: MonitoringConfig, now: datetime, last_attempt: Optional[datetime] = None) -> bool:
    """Due once ``polling_interval`` minutes have passed since the later of the cursor and ``last_attempt``.

    ``last_attempt`` is the start of the newest logged run, whatever its outcome.
    """
    reference = max((t for t in (config.last_check, last_attempt) if t is not None), default=None)
    if reference is None:
        return True
    return now >= reference + timedelta(minutes=config.polling_interval or 5)


class PollingScheduler:
    """Background loop that polls every enabled config once its interval has elapsed."""

    def __init__(self, orchestrator: PollingOrchestrator, tick_seconds: Optional[int] = None):
        self.orchestrator = orchestrator
        self.tick_seconds = tick_seconds or settings.scheduler_tick_seconds
        self.processing = False

    async def start_processing(self):
        """Start the polling loop."""
        if self.processing:
            logger.warning("Polling scheduler already running")
            return

        self.processing = True
        logger.info(f"Starting polling scheduler (tick every {self.tick_seconds}s)")

        while self.processing:
            try:
                await self.run_due_configs()
                await asyncio.sleep(self.tick_seconds)
            except Exception as e:
                logger.error(f"Error in polling loop: {e}")
                await asyncio.sleep(self.tick_seconds * 2)

    async def stop_processing(self):
        logger.info("Stopping polling scheduler")
        self.processing = False

    async def run_due_configs(self, now: Optional[datetime] = None) -> List[PollSummary]:
        now = now or datetime.utcnow()
        with get_db_session() as db:
            configs = db.query(MonitoringConfig).filter(MonitoringConfig.is_enabled == True).all()  # noqa: E712
            last_attempts = dict(
                db.query(PollRunLog.config_id, func.max(PollRunLog.started_at))
                .group_by(PollRunLog.config_id)
                .all()
            )
            due_ids = [config.id for config in configs if is_due(config, now, last_attempts.get(config.id))]

        if not due_ids:
            logger.debug("No monitoring configs due for polling")
            return []

        results = await asyncio.gather(
            *(self.orchestrator.run_config(config_id) for config_id in due_ids), return_exceptions=True
        )

        summaries = []
        for config_id, result in zip(due_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Poll for config {config_id} failed: {type(result).__name__}: {result}")
            else:
                summaries.append(result)
        return summaries
