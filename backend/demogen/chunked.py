import json
import logging

from .kvstore import PropertyStore

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 8000


class ChunkedBlobError(RuntimeError):
    pass


class ChunkMissingError(ChunkedBlobError):
    def __init__(self, base_key: str, index: int, total: int):
        super().__init__(f"Chunk {index + 1}/{total} of '{base_key}' is missing")
        self.base_key = base_key
        self.index = index
        self.total = total


def meta_key(base_key: str) -> str:
    return f"{base_key}_meta"


def chunk_key(base_key: str, index: int) -> str:
    return f"{base_key}_chunk_{index}"


class ChunkedStore:
    """
    1キーあたりの容量制限があるストアに、大きな文字列を分割して保存する。
    - {base}_meta に {"totalChunks": n} を保存し、{base}_chunk_0..n-1 に断片を保存する
    - マニフェストが無ければ「存在しない」とみなす
    """

    def __init__(self, store: PropertyStore, chunk_size: int = DEFAULT_CHUNK_SIZE):
        limit = getattr(store, "max_value_chars", None)
        if chunk_size <= 0 or (limit is not None and chunk_size >= limit):
            raise ValueError(f"chunk_size must be between 1 and {limit} (exclusive): {chunk_size}")
        self.properties = store
        self.chunk_size = chunk_size

    def _read_total(self, base_key: str) -> int | None:
        raw = self.properties.get(meta_key(base_key))
        if raw is None:
            return None
        try:
            return int(json.loads(raw)["totalChunks"])
        except (ValueError, KeyError, TypeError) as e:
            raise ChunkedBlobError(f"Invalid manifest for '{base_key}'") from e

    def store(self, base_key: str, data: str) -> int:
        previous = self._read_total(base_key) or 0
        chunks = [data[i : i + self.chunk_size] for i in range(0, len(data), self.chunk_size)]

        # 断片 → マニフェストの順に書く（マニフェストが見えた時点で全断片が揃っている）
        for i, chunk in enumerate(chunks):
            self.properties.set(chunk_key(base_key, i), chunk)
        self.properties.set(meta_key(base_key), json.dumps({"totalChunks": len(chunks)}))

        for i in range(len(chunks), previous):
            self.properties.delete(chunk_key(base_key, i))

        logger.debug("stored %s (%d chars, %d chunks)", base_key, len(data), len(chunks))
        return len(chunks)

    def load(self, base_key: str) -> str | None:
        total = self._read_total(base_key)
        if total is None:
            return None

        parts = []
        for i in range(total):
            chunk = self.properties.get(chunk_key(base_key, i))
            if chunk is None:
                logger.error("chunk %d/%d of %s is missing", i + 1, total, base_key)
                raise ChunkMissingError(base_key, i, total)
            parts.append(chunk)
        return "".join(parts)

    def delete(self, base_key: str) -> None:
        total = self._read_total(base_key)
        if total is None:
            return
        for i in range(total):
            self.properties.delete(chunk_key(base_key, i))
        self.properties.delete(meta_key(base_key))
