"""
Streaming delivery pipeline.

Connects a payload source (an async iterator of byte chunks) to a
destination sink without buffering the whole payload:

- A reader task pulls chunks from the source into a bounded queue; when
  the queue is full the reader waits, so a slow destination throttles the
  source.
- The writer drains the queue into the sink, then closes the sink. Success
  is reported only after close() returns, i.e. after the destination has
  committed the object.
- The first failure on either side wins: the other side is cancelled, the
  sink is aborted once, and exactly one DeliveryError is raised.

Actions that cannot stream get a materialized buffer via materialize().
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional

from .errors import DeliveryError
from .types import ActionPayload, DEFAULT_CHUNK_SIZE

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUFFERED_CHUNKS = 4


class PayloadSink(ABC):
    """
    Destination side of a delivery.

    Implementations: multipart/resumable uploaders in the storage clients,
    and BufferSink below.
    """

    @abstractmethod
    async def write(self, chunk: bytes) -> None:
        """Accept the next chunk. May block to apply backpressure."""

    @abstractmethod
    async def close(self) -> None:
        """Commit the write. Must not return until the data is durable."""

    async def abort(self) -> None:
        """Discard anything partially written. Called at most once."""


class ObjectStorageClient(ABC):
    """A bucket-oriented destination that hands out upload sinks."""

    @abstractmethod
    async def list_buckets(self) -> list[str]:
        """Bucket names visible to the configured credentials."""

    @abstractmethod
    def open_writer(self, bucket: str, key: str) -> PayloadSink:
        """Sink that creates `key` in `bucket` when closed."""


@dataclass
class DeliveryStats:
    bytes_written: int = 0
    chunks: int = 0


@dataclass
class _ReadFailed:
    error: BaseException


_EOF = object()


class DeliveryPipeline:
    """
    Moves one payload into one sink.

    Usage:
        pipeline = DeliveryPipeline(sink, on_complete=notify)
        stats = await pipeline.run(payload.chunks())
    """

    def __init__(
        self,
        sink: PayloadSink,
        *,
        max_buffered_chunks: int = DEFAULT_MAX_BUFFERED_CHUNKS,
        on_complete: Optional[Callable[[DeliveryStats], Any]] = None,
        label: str = "delivery",
    ):
        if max_buffered_chunks < 1:
            raise ValueError("max_buffered_chunks must be at least 1")
        self.sink = sink
        self.max_buffered_chunks = max_buffered_chunks
        self.on_complete = on_complete
        self.label = label
        self._aborted = False

    async def run(self, source: AsyncIterator[bytes]) -> DeliveryStats:
        """
        Stream source into the sink.

        Raises:
            DeliveryError: Read, write or commit failure
            asyncio.CancelledError: The caller cancelled; the sink is aborted
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_buffered_chunks)
        reader = asyncio.create_task(self._read(source, queue))

        try:
            stats = await self._drain(queue)
        except BaseException as e:
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
            await self._abort()
            if isinstance(e, DeliveryError):
                logger.error(f"[DELIVERY] {self.label} aborted: {e.message}")
            else:
                logger.warning(f"[DELIVERY] {self.label} cancelled ({type(e).__name__})")
            raise

        await reader

        logger.info(
            f"[DELIVERY] {self.label} complete: {stats.bytes_written} bytes in {stats.chunks} chunks"
        )
        if self.on_complete is not None:
            result = self.on_complete(stats)
            if inspect.isawaitable(result):
                await result
        return stats

    async def _read(self, source: AsyncIterator[bytes], queue: asyncio.Queue) -> None:
        try:
            async for chunk in source:
                await queue.put(chunk)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await queue.put(_ReadFailed(e))
            return
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()
        await queue.put(_EOF)

    async def _drain(self, queue: asyncio.Queue) -> DeliveryStats:
        stats = DeliveryStats()
        while True:
            item = await queue.get()
            if item is _EOF:
                break
            if isinstance(item, _ReadFailed):
                if isinstance(item.error, DeliveryError):
                    raise item.error
                raise DeliveryError(
                    f"Reading payload failed: {item.error}",
                    safe_message="Reading the payload failed",
                ) from item.error

            try:
                await self.sink.write(item)
            except DeliveryError:
                raise
            except Exception as e:
                raise DeliveryError(
                    f"Writing to destination failed after {stats.chunks} chunks: {e}",
                    safe_message="Writing to the destination failed",
                ) from e
            stats.bytes_written += len(item)
            stats.chunks += 1

        try:
            await self.sink.close()
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(
                f"Destination did not commit the upload: {e}",
                safe_message="The destination did not accept the upload",
            ) from e
        return stats

    async def _abort(self) -> None:
        if self._aborted:
            return
        self._aborted = True
        try:
            await self.sink.abort()
        except Exception as e:
            # The original failure is what gets reported.
            logger.warning(f"[DELIVERY] {self.label} abort failed: {e}")


class BufferSink(PayloadSink):
    """Collects a payload in memory, optionally capped at max_bytes."""

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._parts: list[bytes] = []
        self._size = 0
        self.data: Optional[bytes] = None

    async def write(self, chunk: bytes) -> None:
        if self.max_bytes is not None and self._size + len(chunk) > self.max_bytes:
            raise DeliveryError(
                f"Payload exceeds {self.max_bytes} bytes",
                safe_message="Payload is too large for this destination",
            )
        self._parts.append(chunk)
        self._size += len(chunk)

    async def close(self) -> None:
        self.data = b"".join(self._parts)
        self._parts = []

    async def abort(self) -> None:
        self._parts = []
        self._size = 0


async def materialize(payload: ActionPayload, *, max_bytes: Optional[int] = None) -> ActionPayload:
    """Return a bytes-backed payload, draining a stream if needed."""
    if not payload.is_streaming:
        return payload
    sink = BufferSink(max_bytes=max_bytes)
    await DeliveryPipeline(sink, label="materialize").run(payload.chunks())
    return ActionPayload.from_bytes(
        sink.data or b"",
        filename=payload.filename,
        file_extension=payload.file_extension,
        mime_type=payload.mime_type,
    )


async def deliver_payload(
    payload: ActionPayload,
    sink: PayloadSink,
    *,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    max_buffered_chunks: int = DEFAULT_MAX_BUFFERED_CHUNKS,
    on_complete: Optional[Callable[[DeliveryStats], Any]] = None,
    label: str = "delivery",
) -> DeliveryStats:
    """Stream a payload into a sink. See DeliveryPipeline."""
    pipeline = DeliveryPipeline(
        sink,
        max_buffered_chunks=max_buffered_chunks,
        on_complete=on_complete,
        label=label,
    )
    return await pipeline.run(payload.chunks(chunk_size))
