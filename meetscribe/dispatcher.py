"""
Concurrent chunk dispatch.

Chunks are transcribed in batches of ``concurrency_limit``: every call in a
batch runs in parallel, and the next batch only starts once the whole batch
has settled.  This caps the number of in-flight recognition requests without a
semaphore, at the cost of the slowest chunk gating its batch.

Each task writes its own slot keyed by chunk index, so results collected so
far survive a caller-level timeout; :meth:`ConcurrentDispatcher.settled` fills
the missing slots with empty results.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterator, List, MutableMapping, Optional, Sequence

from .models import ChunkDescriptor, ChunkOutcome, ChunkResult, settle

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 5

TranscribeFn = Callable[[ChunkDescriptor], Awaitable[ChunkOutcome]]


def iter_batches(chunks: Sequence[ChunkDescriptor], size: int) -> Iterator[Sequence[ChunkDescriptor]]:
    for start in range(0, len(chunks), size):
        yield chunks[start:start + size]


class ConcurrentDispatcher:
    def __init__(
        self,
        transcribe: TranscribeFn,
        concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
        *,
        slots: Optional[MutableMapping[int, ChunkResult]] = None,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")
        self.transcribe = transcribe
        self.concurrency_limit = concurrency_limit
        self.slots: MutableMapping[int, ChunkResult] = {} if slots is None else slots

    async def _run_one(self, chunk: ChunkDescriptor) -> None:
        try:
            outcome = await self.transcribe(chunk)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Unexpected error transcribing chunk %d", chunk.chunk_index)
            outcome = ChunkResult.empty(chunk.chunk_index)
        result = settle(outcome)
        if result.chunk_index != chunk.chunk_index:
            logger.warning(
                "Transcriber returned index %d for chunk %d; keeping the chunk's index",
                result.chunk_index,
                chunk.chunk_index,
            )
            result = result.model_copy(update={"chunk_index": chunk.chunk_index})
        self.slots[chunk.chunk_index] = result

    async def dispatch_all(self, chunks: Sequence[ChunkDescriptor]) -> List[ChunkResult]:
        """Transcribe every chunk and return one result per chunk."""
        batches = list(iter_batches(list(chunks), self.concurrency_limit))
        for number, batch in enumerate(batches, start=1):
            logger.info(
                "Dispatching batch %d/%d (chunks %s)",
                number,
                len(batches),
                ", ".join(str(c.chunk_index) for c in batch),
            )
            await asyncio.gather(*(self._run_one(chunk) for chunk in batch))
        return self.settled(chunks)

    def settled(self, chunks: Sequence[ChunkDescriptor]) -> List[ChunkResult]:
        """Results for ``chunks``, with an empty result for every missing slot."""
        results: Dict[int, ChunkResult] = {}
        for chunk in chunks:
            result = self.slots.get(chunk.chunk_index)
            if result is None:
                logger.warning("Chunk %d did not complete; treating it as failed", chunk.chunk_index)
                result = ChunkResult.empty(chunk.chunk_index)
            results[chunk.chunk_index] = result
        return list(results.values())


async def dispatch_all(
    chunks: Sequence[ChunkDescriptor],
    transcribe: TranscribeFn,
    concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
) -> List[ChunkResult]:
    return await ConcurrentDispatcher(transcribe, concurrency_limit).dispatch_all(chunks)
