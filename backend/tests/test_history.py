from datetime import datetime, timedelta, timezone

import pytest

from demogen.chunked import ChunkedStore, chunk_key, meta_key
from demogen.history import INDEX_KEY, HistoryManager, storage_key
from demogen.kvstore import InMemoryPropertyStore
from demogen.schemas import MAX_PUBLIC_DATASET_ID_CHARS, GenerationOptions, GenerationResult, ProgressStep


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        current = self.now
        self.now += timedelta(seconds=1)
        return current


def _result(datasetId: str, scriptSize: int = 50) -> GenerationResult:
    return GenerationResult(
        success=True,
        steps=[ProgressStep(step=1, status="completed", message="done")],
        dataset_id=datasetId,
        system_instruction="instruction",
        demo_guide=["q1", "q2", "q3", "q4", "q5"],
        setup_script="#" * scriptSize,
    )


@pytest.fixture()
def store():
    return InMemoryPropertyStore(max_value_chars=9000)


@pytest.fixture()
def history(store):
    return HistoryManager(store, ChunkedStore(store, chunk_size=1000), clock=FakeClock())


def _blobKeys(store, storageId):
    return [k for k in store.keys() if k == meta_key(storageId) or k.startswith(f"{storageId}_chunk_")]


def testRecordStoresIndexAndBlob(history, store):
    """目的: record で軽量なインデックスと分割保存された本体が作られることを確認する。"""
    entry = history.record("Bicycle demand", GenerationOptions(row_count=50, table_count=2), _result("demo_1", 2500))

    assert entry.storage_id == storage_key(entry.timestamp)
    assert entry.result is None
    assert _blobKeys(store, entry.storage_id) == sorted(
        [meta_key(entry.storage_id)] + [chunk_key(entry.storage_id, i) for i in range(3)]
    )
    assert "setup_script" not in store.get(INDEX_KEY)

    listed = history.list()
    assert [e.timestamp for e in listed] == [entry.timestamp]
    assert listed[0].dataset_id == "demo_1"
    assert listed[0].options.row_count == 50


def testListIsNewestFirst(history):
    """目的: 一覧が新しい順に並ぶことを確認する。"""
    first = history.record("first", GenerationOptions(), _result("demo_1"))
    second = history.record("second", GenerationOptions(), _result("demo_2"))

    assert [e.timestamp for e in history.list()] == [second.timestamp, first.timestamp]
    assert second.timestamp > first.timestamp


def testGetMaterializesPayload(history):
    """目的: get が本体を読み込んで結合した履歴を返し、無ければ None を返すことを確認する。"""
    entry = history.record("goal", GenerationOptions(), _result("demo_1", 20000))

    loaded = history.get(entry.timestamp)
    assert loaded is not None
    assert loaded.result is not None
    assert loaded.result.dataset_id == "demo_1"
    assert loaded.result.setup_script == "#" * 20000
    assert history.get("19990101T000000000000Z") is None


def testRecordEvictsOldestBeyondCapacity(history, store):
    """目的: 上限10件の状態で11件目を記録すると、最も古い履歴とその本体が削除されることを確認する。"""
    entries = [history.record(f"goal {i}", GenerationOptions(), _result(f"demo_{i}")) for i in range(11)]

    listed = history.list()
    assert len(listed) == 10
    assert entries[0].timestamp not in [e.timestamp for e in listed]
    assert listed[0].timestamp == entries[-1].timestamp
    assert _blobKeys(store, entries[0].storage_id) == []
    for kept in entries[1:]:
        assert _blobKeys(store, kept.storage_id) != []


def testRemoveDeletesEntryAndBlob(history, store):
    """目的: remove で指定した履歴と本体が消え、存在しない指定は何もしないことを確認する。"""
    keep = history.record("keep", GenerationOptions(), _result("demo_1"))
    drop = history.record("drop", GenerationOptions(), _result("demo_2"))

    assert history.remove(drop.timestamp) is True
    assert history.remove("missing") is False

    assert [e.timestamp for e in history.list()] == [keep.timestamp]
    assert _blobKeys(store, drop.storage_id) == []
    assert history.get(drop.timestamp) is None


def testClearRemovesEverything(history, store):
    """目的: clear 後にインデックスも断片・マニフェストも一切残らないことを確認する。"""
    for i in range(3):
        history.record(f"goal {i}", GenerationOptions(), _result(f"demo_{i}", 3000))

    history.clear()

    assert history.list() == []
    assert store.keys() == []


def testTimestampsStayUniqueWithinSameInstant(store):
    """目的: 同じ時刻に記録が重なってもタイムスタンプが一意になることを確認する。"""
    fixed = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)
    history = HistoryManager(store, clock=lambda: fixed)

    a = history.record("a", GenerationOptions(), _result("demo_a"))
    b = history.record("b", GenerationOptions(), _result("demo_b"))

    assert a.timestamp != b.timestamp
    assert len(history.list()) == 2


def testRecordTruncatesLongGoalInIndex(history):
    """目的: インデックスを1キーに収めるため、長い目的文は先頭のみ保持されることを確認する。"""
    entry = history.record("x" * 5000, GenerationOptions(), _result("demo_1"))
    assert len(entry.user_goal) == 300


def testIndexHoldsTenEntriesWithLongestFields(history, store):
    """目的: 目的文・公開データセットIDが最大長でも、10件すべてがインデックス1キーに収まることを確認する。"""
    publicId = "p" * MAX_PUBLIC_DATASET_ID_CHARS
    options = GenerationOptions(row_count=100, table_count=10, public_dataset_id=publicId)
    for i in range(12):
        result = _result(f"demo_20261018_090000_abc{i:03d}").model_copy(update={"public_dataset_id": publicId})
        history.record("あ" * 1000, options, result)

    listed = history.list()
    assert len(listed) == 10
    assert len(store.get(INDEX_KEY)) <= store.max_value_chars
    assert all(e.options.public_dataset_id == publicId for e in listed)


def testRecordEvictsOldestUntilIndexFits():
    """目的: エスケープで伸びる目的文でインデックスが容量を超える場合、古い履歴から落として記録を続けることを確認する。"""
    smallStore = InMemoryPropertyStore(max_value_chars=3000)
    history = HistoryManager(smallStore, ChunkedStore(smallStore, chunk_size=1000), clock=FakeClock())

    entries = [history.record('"' * 300, GenerationOptions(), _result(f"demo_{i}")) for i in range(5)]

    listed = history.list()
    assert 1 <= len(listed) < 5
    assert listed[0].timestamp == entries[-1].timestamp
    assert len(smallStore.get(INDEX_KEY)) <= 3000
    keptTimestamps = {e.timestamp for e in listed}
    for entry in entries:
        if entry.timestamp in keptTimestamps:
            assert _blobKeys(smallStore, entry.storage_id) != []
        else:
            assert _blobKeys(smallStore, entry.storage_id) == []
