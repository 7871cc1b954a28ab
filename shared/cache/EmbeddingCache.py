"""Bounded LRU memo of text -> embedding vector, shared by retrieval and ingestion."""

import asyncio
from collections import OrderedDict

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.helper.HelperConfig import HelperConfig


class _ComputationAbandoned(Exception):
    """The caller computing an embedding was cancelled before it finished."""


class EmbeddingCache:
    """Memoizes embedding lookups for the lifetime of the process.

    A hit returns the stored vector without calling the provider. Concurrent
    misses for the same text share one provider call. Failed lookups are not
    cached; the error reaches every waiter. If the caller doing the lookup is
    cancelled, the waiters take over instead of being cancelled with it.
    """

    def __init__(self, helper_config: HelperConfig, embed_client: EmbedClientInterface, capacity: int | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._embed_client = embed_client
        self.capacity = int(capacity if capacity is not None else helper_config.get_number_val("EMBED_CACHE_SIZE", default=500))
        if self.capacity < 1:
            raise ValueError("EMBED_CACHE_SIZE must be at least 1.")
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self._in_flight: dict[str, asyncio.Future] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, text: str) -> bool:
        return text in self._entries

    ##########################################
    ############### CORE #####################
    ##########################################

    def _lookup(self, text: str) -> list[float] | None:
        vector = self._entries.get(text)
        if vector is not None:
            self._entries.move_to_end(text)
            self.hits += 1
        return vector

    def _store(self, text: str, vector: list[float]) -> None:
        self._entries[text] = vector
        self._entries.move_to_end(text)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self.logging.debug("Embedding cache full, evicted entry of %d chars.", len(evicted))

    async def get_or_compute(self, text: str) -> list[float]:
        """Return the embedding of text, calling the provider at most once per miss.

        Raises:
            ProviderUnavailable: If the provider call fails.
        """
        vector = self._lookup(text)
        if vector is not None:
            return vector

        pending = self._in_flight.get(text)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except _ComputationAbandoned:
                # the owner went away; the first waiter to get here computes it again
                return await self.get_or_compute(text)

        self.misses += 1
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._in_flight[text] = future
        try:
            vectors = await self._embed_client.do_embed([text])
            vector = vectors[0]
            self._store(text, vector)
            future.set_result(vector)
            return vector
        except asyncio.CancelledError:
            future.set_exception(_ComputationAbandoned())
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # mark retrieved so an unobserved failure is not reported by the loop
            future.exception()
            raise
        finally:
            self._in_flight.pop(text, None)

    async def get_or_compute_many(self, texts: list[str]) -> list[list[float]]:
        """Return embeddings for texts in order, sending all misses in one provider call.

        If the batched call fails, each miss is retried on its own so one bad
        text does not fail the others; the first individual failure is raised.
        """
        results: list[list[float] | None] = [self._lookup(text) for text in texts]
        missing = sorted({text for text, vector in zip(texts, results) if vector is None and text not in self._in_flight})

        if missing:
            self.misses += len(missing)
            try:
                vectors = await self._embed_client.do_embed(missing)
                for text, vector in zip(missing, vectors):
                    self._store(text, vector)
            except Exception as exc:
                self.logging.warning("Batch embedding of %d text(s) failed, falling back to single lookups: %s", len(missing), exc)

        for position, text in enumerate(texts):
            if results[position] is None:
                results[position] = self._entries.get(text) or await self.get_or_compute(text)
        return results
