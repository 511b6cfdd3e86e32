"""Collection loader: bulk-resolve every mint of a collection.

Jobs flow through three stages connected by bounded queues:

    enumerate → [metadata queue] → metadata workers
              → [fetch queue]    → fetch workers (fetch + transform)
              → [persist queue]  → persist workers

A full queue blocks its producer, so memory stays bounded however large the
collection is. Each queue is closed by the loader itself: once every producer
of a queue has returned, one close marker per consumer is put on it.

Cancellation (cancel_event): enumeration stops and any job that reaches a
stage afterwards is abandoned. Abandoned jobs stay pending; nothing is marked
ready after the signal.
"""

import asyncio
from dataclasses import dataclass, field

import structlog

from nftcache.services.blockchain.collection import MintSource
from nftcache.services.blockchain.metadata_resolver import parse_mint
from nftcache.services.exceptions import InvalidMintError, PermanentError, TransientError
from nftcache.services.pipeline import MediaResolutionPipeline, PipelineJob, describe_error

logger = structlog.get_logger(__name__)

# Queue close marker
_CLOSED = object()


@dataclass
class LoadSummary:
    """Outcome counts for one collection load."""

    collection_id: str
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    abandoned: int = 0
    cancelled: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped + self.abandoned


class CollectionLoader:
    """Drives the pipeline stages for many mints concurrently."""

    def __init__(
        self,
        pipeline: MediaResolutionPipeline,
        mint_source: MintSource,
        *,
        metadata_workers: int = 4,
        fetch_workers: int = 16,
        persist_workers: int = 4,
        queue_size: int = 64,
    ):
        self.pipeline = pipeline
        self.mint_source = mint_source
        self.metadata_workers = metadata_workers
        self.fetch_workers = fetch_workers
        self.persist_workers = persist_workers
        self.queue_size = queue_size

    async def load_collection(
        self,
        collection_id: str,
        refresh: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> LoadSummary:
        """Resolve every mint of a collection.

        Returns once every worker has exited. If the calling task is cancelled,
        all workers are cancelled and joined before CancelledError propagates.

        Raises:
            StorageError: If the cache fails (the load is aborted)
        """
        summary = LoadSummary(collection_id=collection_id)
        cancel_event = cancel_event or asyncio.Event()

        metadata_queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        fetch_queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        persist_queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)

        logger.info(
            "loader.started",
            collection=collection_id,
            refresh=refresh,
            metadata_workers=self.metadata_workers,
            fetch_workers=self.fetch_workers,
            persist_workers=self.persist_workers,
        )

        enumerator = asyncio.create_task(
            self._enumerate(collection_id, refresh, metadata_queue, summary, cancel_event)
        )
        metadata_tasks = [
            asyncio.create_task(
                self._stage_worker(
                    self._metadata_step, metadata_queue, fetch_queue, summary, cancel_event
                )
            )
            for _ in range(self.metadata_workers)
        ]
        fetch_tasks = [
            asyncio.create_task(
                self._stage_worker(
                    self._fetch_step, fetch_queue, persist_queue, summary, cancel_event
                )
            )
            for _ in range(self.fetch_workers)
        ]
        persist_tasks = [
            asyncio.create_task(
                self._stage_worker(self._persist_step, persist_queue, None, summary, cancel_event)
            )
            for _ in range(self.persist_workers)
        ]
        all_tasks = [enumerator, *metadata_tasks, *fetch_tasks, *persist_tasks]
        closer = asyncio.create_task(
            self._close_stages(
                enumerator, metadata_tasks, fetch_tasks, persist_tasks,
                metadata_queue, fetch_queue, persist_queue,
            )
        )

        # Watch every task so a dead worker aborts the load instead of
        # leaving its producers blocked on a full queue.
        pending = {closer, *all_tasks}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
                for task in done:
                    error = None if task.cancelled() else task.exception()
                    if error is not None:
                        logger.error(
                            "loader.aborted",
                            collection=collection_id,
                            error_type=type(error).__name__,
                            error=str(error),
                        )
                        raise error
        finally:
            for task in (closer, *all_tasks):
                if not task.done():
                    task.cancel()
            await asyncio.gather(closer, *all_tasks, return_exceptions=True)

        summary.cancelled = cancel_event.is_set()
        logger.info(
            "loader.completed",
            collection=collection_id,
            succeeded=summary.succeeded,
            failed=summary.failed,
            skipped=summary.skipped,
            abandoned=summary.abandoned,
            cancelled=summary.cancelled,
        )
        return summary

    async def _close_stages(
        self,
        enumerator: asyncio.Task,
        metadata_tasks: list[asyncio.Task],
        fetch_tasks: list[asyncio.Task],
        persist_tasks: list[asyncio.Task],
        metadata_queue: asyncio.Queue,
        fetch_queue: asyncio.Queue,
        persist_queue: asyncio.Queue,
    ) -> None:
        """Close each queue in stage order as its producers finish."""
        await self._close_after([enumerator], metadata_queue, self.metadata_workers)
        await self._close_after(metadata_tasks, fetch_queue, self.fetch_workers)
        await self._close_after(fetch_tasks, persist_queue, self.persist_workers)
        await asyncio.gather(*persist_tasks)

    @staticmethod
    async def _close_after(producers: list[asyncio.Task], queue: asyncio.Queue, consumers: int):
        """Wait for every producer of `queue`, then close it for each consumer."""
        await asyncio.gather(*producers)
        for _ in range(consumers):
            await queue.put(_CLOSED)

    async def _enumerate(
        self,
        collection_id: str,
        refresh: bool,
        queue: asyncio.Queue,
        summary: LoadSummary,
        cancel_event: asyncio.Event,
    ) -> None:
        seen: set[str] = set()
        try:
            async for raw_mint in self.mint_source.iter_mints(collection_id):
                if cancel_event.is_set():
                    logger.info("loader.enumeration_cancelled", collection=collection_id)
                    break

                try:
                    mint = str(parse_mint(raw_mint))
                except InvalidMintError as e:
                    summary.failed += 1
                    summary.errors.append(f"{raw_mint}: {describe_error(e)}")
                    continue

                if mint in seen:
                    continue
                seen.add(mint)

                if not await self.pipeline.should_process(mint, refresh):
                    summary.skipped += 1
                    continue

                await queue.put(PipelineJob(mint=mint, refresh=refresh))
        except (TransientError, PermanentError) as e:
            # Jobs already enqueued still drain
            summary.errors.append(f"enumeration: {describe_error(e)}")
            logger.error(
                "loader.enumeration_failed",
                collection=collection_id,
                error_type=type(e).__name__,
                error=str(e),
                enumerated=len(seen),
            )

    async def _stage_worker(
        self,
        step,
        inbox: asyncio.Queue,
        outbox: asyncio.Queue | None,
        summary: LoadSummary,
        cancel_event: asyncio.Event,
    ) -> None:
        """Consume jobs until the close marker; advance, fail or abandon each."""
        while True:
            job = await inbox.get()
            if job is _CLOSED:
                return

            if cancel_event.is_set():
                summary.abandoned += 1
                logger.debug("loader.job.abandoned", mint=job.mint, stage=job.stage.value)
                continue

            try:
                await step(job)
            except (TransientError, PermanentError) as e:
                await self.pipeline.fail(job, e)
                summary.failed += 1
                summary.errors.append(f"{job.mint}: {job.failure}")
                logger.debug("loader.job.failed", mint=job.mint, error_type=type(e).__name__)
                continue

            if outbox is None:
                summary.succeeded += 1
            else:
                await outbox.put(job)

    async def _metadata_step(self, job: PipelineJob) -> None:
        await self.pipeline.start(job)
        await self.pipeline.resolve_metadata(job)

    async def _fetch_step(self, job: PipelineJob) -> None:
        await self.pipeline.fetch_media(job)
        await self.pipeline.transform_media(job)

    async def _persist_step(self, job: PipelineJob) -> None:
        await self.pipeline.persist(job)
