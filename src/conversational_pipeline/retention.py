"""
Retained Chunks

Emitted chunks kept for read-out by the session. Past the retention ceiling
the oldest chunk is evicted and its audio reference revoked. Each reference
is revoked at most once no matter how eviction, release and clear interleave.
"""

from collections import OrderedDict
from collections.abc import Callable, Iterator

from conversational_pipeline.logging import get_logger
from conversational_pipeline.models import EmittedChunk

logger = get_logger()

DEFAULT_RETENTION_CEILING = 100

AudioRevoker = Callable[[str], None]


def _noop_revoker(ref: str) -> None:
    return None


class RetainedChunks:
    """Bounded, insertion-ordered store of emitted chunks."""

    def __init__(
        self,
        ceiling: int = DEFAULT_RETENTION_CEILING,
        revoke: AudioRevoker | None = None,
    ):
        if ceiling <= 0:
            raise ValueError("ceiling must be positive")
        self.ceiling = ceiling
        self._revoke = revoke or _noop_revoker
        self._chunks: OrderedDict[str, EmittedChunk] = OrderedDict()
        self._revoked: set[str] = set()
        self.evicted_count = 0

    def append(self, chunk: EmittedChunk) -> None:
        if chunk.id in self._chunks:
            # Replace in place; keep position
            self._chunks[chunk.id] = chunk
            return

        self._chunks[chunk.id] = chunk
        while len(self._chunks) > self.ceiling:
            _, oldest = self._chunks.popitem(last=False)
            self.evicted_count += 1
            self.revoke(oldest.audio_url, chunk_id=oldest.id)
            logger.debug("chunk_evicted", chunk_id=oldest.id, retained=len(self._chunks))

    def get(self, chunk_id: str) -> EmittedChunk | None:
        return self._chunks.get(chunk_id)

    def list(self) -> list[EmittedChunk]:
        return list(self._chunks.values())

    def release_all(self) -> int:
        """Revoke every retained audio reference; chunks stay readable."""
        revoked = 0
        for chunk in self._chunks.values():
            if self.revoke(chunk.audio_url, chunk_id=chunk.id):
                revoked += 1
        return revoked

    def clear(self) -> None:
        self.release_all()
        self._chunks.clear()

    def is_revoked(self, ref: str) -> bool:
        return ref in self._revoked

    def revoke(self, ref: str | None, chunk_id: str | None = None) -> bool:
        """Revoke one audio reference unless it was revoked already.

        Also used for audio of chunks that never reached retention.
        """
        if not ref or ref in self._revoked:
            return False
        self._revoked.add(ref)
        try:
            self._revoke(ref)
        except Exception as e:
            logger.warning("audio_revoke_failed", chunk_id=chunk_id, error=str(e))
        return True

    def __len__(self) -> int:
        return len(self._chunks)

    def __iter__(self) -> Iterator[EmittedChunk]:
        return iter(list(self._chunks.values()))

    def __contains__(self, chunk_id: object) -> bool:
        return chunk_id in self._chunks
