import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import ValidationError

from .chunked import ChunkedStore
from .kvstore import PropertyStore
from .schemas import GenerationOptions, GenerationResult, HistoryEntry

logger = logging.getLogger(__name__)

INDEX_KEY = "generation_history"
DEFAULT_MAX_ENTRIES = 10
# インデックスは1キーに収める必要があるため、目的文は先頭だけ保持する
MAX_INDEX_GOAL_CHARS = 300

_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


class HistoryIndexError(RuntimeError):
    pass


def storage_key(timestamp: str) -> str:
    return f"history_{timestamp}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class HistoryManager:
    """
    生成履歴（新しい順、最大 max_entries 件）を管理する。
    - インデックス（軽量な一覧）は1キーにJSONで保存する
    - 生成結果本体は ChunkedStore に分割して保存し、インデックスからは storage_id で参照する
    - 上限を超えたら最も古い履歴を落とし、その本体も削除する
    """

    def __init__(
        self,
        store: PropertyStore,
        chunked: ChunkedStore | None = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.chunked = chunked or ChunkedStore(store)
        self.max_entries = max(1, int(max_entries))
        self.clock = clock

    def _read_index(self) -> list[HistoryEntry]:
        raw = self.store.get(INDEX_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            return [HistoryEntry.model_validate(item) for item in items]
        except (ValueError, TypeError, ValidationError) as e:
            logger.error("history index is corrupted: %s", e)
            raise HistoryIndexError("History index is corrupted") from e

    @staticmethod
    def _serialize_index(entries: list[HistoryEntry]) -> str:
        payload = [e.model_dump(mode="json", exclude={"result"}) for e in entries]
        return json.dumps(payload, ensure_ascii=False)

    def _write_index(self, entries: list[HistoryEntry]) -> None:
        self.store.set(INDEX_KEY, self._serialize_index(entries))

    def _fit_index(self, entries: list[HistoryEntry]) -> tuple[list[HistoryEntry], list[HistoryEntry]]:
        """目的: 件数上限とキーの容量上限の両方に収まるよう、古い履歴から落とす。"""
        kept = entries[: self.max_entries]
        dropped = entries[self.max_entries :]
        limit = getattr(self.store, "max_value_chars", None)
        if limit is None:
            return kept, dropped
        # エスケープで伸びる分も含め、シリアライズ後の長さで判定する
        while len(kept) > 1 and len(self._serialize_index(kept)) > limit:
            dropped.insert(0, kept.pop())
        return kept, dropped

    def _new_timestamp(self, entries: list[HistoryEntry]) -> str:
        existing = {e.timestamp for e in entries}
        now = self.clock()
        timestamp = now.strftime(_TIMESTAMP_FORMAT)
        # 同一マイクロ秒の記録が重なった場合はずらして一意にする
        while timestamp in existing:
            now += timedelta(microseconds=1)
            timestamp = now.strftime(_TIMESTAMP_FORMAT)
        return timestamp

    def record(
        self,
        user_goal: str,
        options: GenerationOptions,
        result: GenerationResult,
    ) -> HistoryEntry:
        entries = self._read_index()
        timestamp = self._new_timestamp(entries)
        storageId = storage_key(timestamp)

        # 本体 → インデックスの順に書く（インデックスが参照する本体は必ず存在する）
        self.chunked.store(storageId, result.model_dump_json())

        entry = HistoryEntry(
            timestamp=timestamp,
            user_goal=user_goal[:MAX_INDEX_GOAL_CHARS],
            options=options,
            dataset_id=result.dataset_id,
            public_dataset_id=result.public_dataset_id,
            storage_id=storageId,
        )
        entries.insert(0, entry)
        entries, evicted = self._fit_index(entries)

        try:
            self._write_index(entries)
        except Exception:
            self.chunked.delete(storageId)
            raise

        for old in evicted:
            logger.info("evicting history entry %s", old.timestamp)
            self.chunked.delete(old.storage_id)
        return entry

    def list(self) -> list[HistoryEntry]:
        return self._read_index()

    def get(self, timestamp: str) -> HistoryEntry | None:
        for entry in self._read_index():
            if entry.timestamp != timestamp:
                continue
            raw = self.chunked.load(entry.storage_id)
            if raw is None:
                return entry
            return entry.model_copy(update={"result": GenerationResult.model_validate_json(raw)})
        return None

    def remove(self, timestamp: str) -> bool:
        entries = self._read_index()
        target = next((e for e in entries if e.timestamp == timestamp), None)
        if target is None:
            return False
        self._write_index([e for e in entries if e.timestamp != timestamp])
        self.chunked.delete(target.storage_id)
        return True

    def clear(self) -> None:
        for entry in self._read_index():
            self.chunked.delete(entry.storage_id)
        self.store.delete(INDEX_KEY)
