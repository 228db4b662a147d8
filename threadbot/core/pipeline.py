"""
Streaming response pipeline.

A producer task pulls increments from the generation stream into a
single-slot asyncio.Queue (the channel), one increment per demand signal
from the consumer. The consumer delivers each increment to the thread's
ResponseStream, awaiting one delivery before asking for the next. Before
every pull and every delivery the consumer checks that the conversation is
still subscribed and the thread has not been cancelled; if either fails
the channel is closed: producer cancelled, generation stream aclose()d.
No increment is pulled that the consumer has not asked for.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Sequence

from threadbot.adapters.base import ResponseStream
from threadbot.core.errors import DeliveryFailure, FetchFailure, GenerationFailure
from threadbot.core.runtime import GenerationService
from threadbot.core.thread import Thread
from threadbot.schemas.conversation import TranscriptEntry

logger = logging.getLogger(__name__)

# Sentinels passed through the channel
_STREAM_END = object()
_CANCELLED = object()


@dataclass
class _ProducerError:
    error: BaseException


class StreamingResponsePipeline:
    def __init__(self, generation: GenerationService) -> None:
        self._generation = generation

    async def respond(self, thread: Thread, transcript: Sequence[TranscriptEntry]) -> int:
        """
        Stream one generated reply into the thread.

        Returns the number of increments delivered. Raises GenerationFailure
        or DeliveryFailure; increments delivered before the failure stay.
        """
        if not transcript:
            logger.info("Empty transcript for %s, nothing to generate", thread.ref.key)
            return 0

        chunks = self._generation.generate(list(transcript))
        channel: asyncio.Queue[Any] = asyncio.Queue(maxsize=1)
        demand = asyncio.Semaphore(0)
        producer = asyncio.create_task(self._produce(chunks, channel, demand))
        stream = thread.open_stream()
        delivered = 0
        try:
            while True:
                if await self._should_stop(thread):
                    break
                demand.release()
                item = await self._receive(channel, thread.cancelled)
                if item is _CANCELLED or item is _STREAM_END:
                    break
                if isinstance(item, _ProducerError):
                    raise GenerationFailure(
                        f"Generation failed for {thread.ref.key} after "
                        f"{delivered} increment(s): {item.error}"
                    ) from item.error
                if await self._should_stop(thread):
                    break
                await self._deliver(stream, item)
                delivered += 1
        except BaseException:
            await self._close_channel(producer, chunks)
            with contextlib.suppress(Exception):
                await stream.close()
            raise
        await self._close_channel(producer, chunks)
        await self._finish(stream)
        logger.info("Delivered %d increment(s) to %s", delivered, thread.ref.key)
        return delivered

    async def _produce(
        self,
        chunks: AsyncIterator[str],
        channel: asyncio.Queue,
        demand: asyncio.Semaphore,
    ) -> None:
        while True:
            await demand.acquire()
            try:
                chunk = await chunks.__anext__()
            except StopAsyncIteration:
                await channel.put(_STREAM_END)
                return
            except Exception as e:
                await channel.put(_ProducerError(e))
                return
            await channel.put(chunk)

    async def _receive(self, channel: asyncio.Queue, cancelled: asyncio.Event) -> Any:
        """Next item from the channel, or _CANCELLED as soon as the thread is cancelled."""
        if cancelled.is_set():
            return _CANCELLED
        get = asyncio.ensure_future(channel.get())
        stop = asyncio.ensure_future(cancelled.wait())
        try:
            done, _ = await asyncio.wait({get, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (get, stop):
                if not task.done():
                    task.cancel()
        if get in done:
            return get.result()
        return _CANCELLED

    async def _should_stop(self, thread: Thread) -> bool:
        if thread.cancelled.is_set():
            logger.info("Delivery to %s cancelled, stopping stream", thread.ref.key)
            return True
        try:
            subscribed = await thread.is_subscribed()
        except Exception as e:
            raise FetchFailure(f"Subscription lookup failed for {thread.ref.key}") from e
        if not subscribed:
            logger.info("%s was unsubscribed, stopping stream", thread.ref.key)
            return True
        return False

    async def _deliver(self, stream: ResponseStream, chunk: str) -> None:
        try:
            result = await stream.send(chunk)
        except DeliveryFailure:
            raise
        except Exception as e:
            raise DeliveryFailure(f"Increment delivery failed: {e}") from e
        if not result.success:
            raise DeliveryFailure("Platform did not accept the increment")

    async def _finish(self, stream: ResponseStream) -> None:
        try:
            await stream.close()
        except DeliveryFailure:
            raise
        except Exception as e:
            raise DeliveryFailure(f"Finishing the streamed reply failed: {e}") from e

    async def _close_channel(self, producer: asyncio.Task, chunks: AsyncIterator[str]) -> None:
        """Stop the producer and release the generation stream handle."""
        if not producer.done():
            producer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await producer
        aclose = getattr(chunks, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception:
                logger.warning("Closing the generation stream failed", exc_info=True)
