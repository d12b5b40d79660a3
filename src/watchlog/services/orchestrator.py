"""Per-intake pipeline: dedup, fetch, enrich, append, mark and notify."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional, Tuple

import httpx
from rich.console import Console

from watchlog.config.settings import Settings, get_settings
from watchlog.models.diagnostic import DiagnosticRecord, FailureKind, LoggedNotification
from watchlog.models.watch import ChannelRecord, IntakeEvent, LogEntry, MetadataRecord, WatchConfig
from watchlog.services.catalog import (
    CatalogClient,
    CategoryNameCache,
    MetadataFetcher,
    NotFoundError,
    NetworkError,
    infer_is_shorts,
)
from watchlog.services.config_store import ConfigStore
from watchlog.services.dedup import DedupGuard
from watchlog.services.kv_store import StorageError, StorePair
from watchlog.services.log_store import LogStore
from watchlog.services.notifier import Notifier
from watchlog.utils import Clock, utc_now
from watchlog.utils.progress import IntakeStage, StageUpdate

StageHandler = Callable[[StageUpdate], None]


@dataclass(slots=True)
class IntakeOutcome:
    """Where a single intake ended and what it produced."""

    subject_id: str
    stage: IntakeStage
    entry: Optional[LogEntry] = None
    diagnostic: Optional[DiagnosticRecord] = None

    @property
    def logged(self) -> bool:
        return self.entry is not None


@dataclass(slots=True)
class _IntakeTrace:
    event: IntakeEvent
    on_stage: Optional[StageHandler]
    stage: IntakeStage = IntakeStage.INTAKE
    profile: Optional[str] = None


def classify_failure(exc: BaseException) -> FailureKind:
    if isinstance(exc, NotFoundError):
        return FailureKind.NOT_FOUND
    if isinstance(exc, NetworkError):
        return FailureKind.NETWORK
    if isinstance(exc, StorageError):
        return FailureKind.STORAGE
    return FailureKind.UNEXPECTED


class WatchLogger:
    """Coordinates one watch intake end to end.

    Intakes are independent tasks. Unless ``serialize_intakes`` is enabled, two intakes
    for the same subject may both pass the dedup check before either marks it, and
    both will be logged. The event producer never learns the outcome of
    :meth:`submit`; failures are recorded as :class:`DiagnosticRecord` instances.
    """

    def __init__(
        self,
        *,
        fetcher: MetadataFetcher,
        config_store: ConfigStore,
        dedup_guard: DedupGuard,
        log_store: LogStore,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        console: Optional[Console] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._console = console or Console()
        self._fetcher = fetcher
        self._config_store = config_store
        self._dedup_guard = dedup_guard
        self._log_store = log_store
        self._notifier = notifier or Notifier(console=self._console)
        self._clock = clock or utc_now
        self._region = self._settings.pipeline.category_region
        self._serialize = self._settings.pipeline.serialize_intakes
        self._intake_lock = asyncio.Lock()
        self._submitted: List[asyncio.Task[IntakeOutcome]] = []
        self._diagnostics: Deque[DiagnosticRecord] = deque(maxlen=self._settings.pipeline.diagnostics_retained)

    # ------------------------------------------------------------------ #
    # Public API                                                         #
    # ------------------------------------------------------------------ #
    @property
    def notifier(self) -> Notifier:
        return self._notifier

    @property
    def log_store(self) -> LogStore:
        return self._log_store

    @property
    def config_store(self) -> ConfigStore:
        return self._config_store

    @property
    def diagnostics(self) -> List[DiagnosticRecord]:
        return list(self._diagnostics)

    def submit(self, event: IntakeEvent) -> "asyncio.Task[IntakeOutcome]":
        """Schedule ``event`` as an independent task and return immediately."""

        task = asyncio.get_running_loop().create_task(self.handle(event))
        self._submitted.append(task)
        return task

    async def drain(self) -> List[IntakeOutcome]:
        """Collect the outcome of every intake submitted since the last drain.

        Finished intakes are kept until collected, so their outcomes are included too.
        """

        outcomes: List[IntakeOutcome] = []
        while self._submitted:
            batch, self._submitted = self._submitted, []
            outcomes.extend(await asyncio.gather(*batch))
        return outcomes

    async def handle(self, event: IntakeEvent, *, on_stage: Optional[StageHandler] = None) -> IntakeOutcome:
        """Run one intake to completion; never raises."""

        trace = _IntakeTrace(event=event, on_stage=on_stage)
        try:
            if self._serialize:
                async with self._intake_lock:
                    return await self._run(trace)
            return await self._run(trace)
        except Exception as exc:
            diagnostic = self._report(trace, exc)
            return IntakeOutcome(subject_id=event.subject_id, stage=IntakeStage.FAILED, diagnostic=diagnostic)

    async def aclose(self) -> None:
        await self.drain()
        await self._fetcher.aclose()

    # ------------------------------------------------------------------ #
    # Pipeline                                                           #
    # ------------------------------------------------------------------ #
    async def _run(self, trace: _IntakeTrace) -> IntakeOutcome:
        event = trace.event
        self._advance(trace, IntakeStage.INTAKE, f"Received {event.source_url}")

        self._advance(trace, IntakeStage.CONFIG_READ, "Reading configuration")
        config = await self._config_store.read()
        trace.profile = config.profile

        self._advance(trace, IntakeStage.DEDUP_CHECK, f"Checking recent logs for profile {config.profile}")
        if await self._dedup_guard.is_suppressed(config.profile, event.subject_id):
            self._advance(trace, IntakeStage.SUPPRESSED, "Logged recently; skipping")
            return IntakeOutcome(subject_id=event.subject_id, stage=IntakeStage.SUPPRESSED)

        category_name: Optional[str] = None
        channel_extra: Optional[ChannelRecord] = None
        if config.has_credential:
            self._advance(trace, IntakeStage.FETCH_PRIMARY, "Fetching catalog metadata")
            try:
                metadata = await self._fetcher.fetch_primary(event.subject_id, config.api_key or "")
            except (NetworkError, NotFoundError) as exc:
                diagnostic = self._report(trace, exc)
                self._advance(trace, IntakeStage.FETCH_FAILED, f"Catalog lookup failed: {exc}")
                return IntakeOutcome(subject_id=event.subject_id, stage=IntakeStage.FETCH_FAILED, diagnostic=diagnostic)
            category_name, channel_extra = await self._enrich(trace, config, metadata)
        else:
            self._advance(trace, IntakeStage.FALLBACK, "No API key configured; logging without metadata")
            metadata = MetadataRecord.fallback(event.subject_id)

        self._advance(trace, IntakeStage.ASSEMBLE_ENTRY, "Assembling entry")
        entry = LogEntry.assemble(
            event,
            profile=config.profile,
            metadata=metadata,
            is_shorts=infer_is_shorts(event.source_url, metadata.duration_seconds),
            watched_at=self._clock(),
            category_name=category_name,
            channel_extra=channel_extra,
        )

        self._advance(trace, IntakeStage.APPEND_LOG, "Appending to log")
        await self._log_store.append(entry)

        self._advance(trace, IntakeStage.MARK_LOGGED, "Recording dedup timestamp")
        await self._dedup_guard.mark_logged(config.profile, event.subject_id)

        self._advance(trace, IntakeStage.NOTIFY, "Notifying listeners")
        self._notifier.emit(LoggedNotification(entry=entry))
        self._console.log(
            f"[green]Logged:[/green] {entry.title or entry.subject_id} "
            f"(subject_id={entry.subject_id}, profile={entry.profile}, shorts={entry.is_shorts})"
        )
        return IntakeOutcome(subject_id=event.subject_id, stage=IntakeStage.NOTIFY, entry=entry)

    async def _enrich(
        self,
        trace: _IntakeTrace,
        config: WatchConfig,
        metadata: MetadataRecord,
    ) -> Tuple[Optional[str], Optional[ChannelRecord]]:
        self._advance(trace, IntakeStage.ENRICH_CATEGORY, "Resolving category name")
        category_name = await self._fetcher.fetch_category_name(metadata.category_id, config.api_key, self._region)

        self._advance(trace, IntakeStage.ENRICH_CHANNEL, "Fetching channel details")
        channel_extra = await self._fetcher.fetch_channel_basics(metadata.channel_id, config.api_key)
        return category_name, channel_extra

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #
    def _advance(self, trace: _IntakeTrace, stage: IntakeStage, message: str) -> None:
        trace.stage = stage
        if trace.on_stage is None:
            return
        trace.on_stage(StageUpdate(stage=stage, subject_id=trace.event.subject_id, message=message))

    def _report(self, trace: _IntakeTrace, exc: BaseException) -> DiagnosticRecord:
        diagnostic = DiagnosticRecord(
            kind=classify_failure(exc),
            subject_id=trace.event.subject_id,
            stage=trace.stage,
            cause=str(exc) or exc.__class__.__name__,
            error_type=exc.__class__.__name__,
            occurred_at=self._clock(),
            profile=trace.profile,
        )
        self._diagnostics.append(diagnostic)
        self._console.log(
            f"[red]Intake failed:[/red] kind={diagnostic.kind.value} stage={diagnostic.stage.value} "
            f"subject_id={diagnostic.subject_id} cause={diagnostic.cause}"
        )
        return diagnostic


def create_watch_logger(
    stores: StorePair,
    *,
    settings: Optional[Settings] = None,
    console: Optional[Console] = None,
    category_cache: Optional[CategoryNameCache] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    clock: Optional[Clock] = None,
) -> WatchLogger:
    """Wire a :class:`WatchLogger` from settings and an opened store pair."""

    settings = settings or get_settings()
    console = console or Console()
    pipeline = settings.pipeline

    client = CatalogClient(
        base_url=settings.catalog_base_url,
        timeout=pipeline.request_timeout_seconds,
        transport=transport,
    )
    fetcher = MetadataFetcher(
        client,
        category_cache=category_cache,
        console=console,
        max_retries=pipeline.max_retries,
        backoff_ms=pipeline.retry_backoff_ms,
    )
    return WatchLogger(
        fetcher=fetcher,
        config_store=ConfigStore(stores.sync, console=console),
        dedup_guard=DedupGuard(stores.local, ttl_minutes=pipeline.dedup_ttl_minutes, clock=clock, console=console),
        log_store=LogStore(stores.local, capacity=pipeline.log_capacity, clock=clock, console=console),
        notifier=Notifier(console=console),
        settings=settings,
        console=console,
        clock=clock,
    )


__all__ = ["IntakeOutcome", "StageHandler", "WatchLogger", "classify_failure", "create_watch_logger"]
