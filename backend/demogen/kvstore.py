import logging
from typing import Callable, Protocol

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import MAX_PROPERTY_VALUE_CHARS, UserProperty

logger = logging.getLogger(__name__)


class PropertyStoreError(RuntimeError):
    pass


class PropertyValueTooLargeError(PropertyStoreError):
    def __init__(self, key: str, size: int, limit: int):
        super().__init__(f"Value for '{key}' is too large ({size} > {limit} chars)")
        self.key = key
        self.size = size
        self.limit = limit


class PropertyStore(Protocol):
    """ユーザー単位のキー・バリューストアの境界（値は小さな文字列に限られる）。"""

    max_value_chars: int

    def get(self, key: str) -> str | None:  # pragma: no cover
        ...

    def set(self, key: str, value: str) -> None:  # pragma: no cover
        ...

    def delete(self, key: str) -> None:  # pragma: no cover
        ...


def _check_size(key: str, value: str, limit: int) -> None:
    if len(value) > limit:
        raise PropertyValueTooLargeError(key, len(value), limit)


class InMemoryPropertyStore:
    """プロセス内の dict で保持する実装（テスト/開発用）。"""

    def __init__(self, max_value_chars: int = MAX_PROPERTY_VALUE_CHARS):
        self.max_value_chars = max_value_chars
        self.data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        _check_size(key, value, self.max_value_chars)
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self.data)


class SqlPropertyStore:
    """
    user_properties テーブルを使う実装。
    - owner（呼び出しユーザー）ごとにキー空間を分ける
    - 操作ごとにセッションを開いてコミットする
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        owner: str,
        *,
        max_value_chars: int = MAX_PROPERTY_VALUE_CHARS,
    ):
        self.session_factory = session_factory
        self.owner = owner
        self.max_value_chars = max_value_chars

    def get(self, key: str) -> str | None:
        db = self.session_factory()
        try:
            return db.execute(
                select(UserProperty.value).where(
                    UserProperty.owner == self.owner, UserProperty.key == key
                )
            ).scalar_one_or_none()
        finally:
            db.close()

    def set(self, key: str, value: str) -> None:
        _check_size(key, value, self.max_value_chars)
        db = self.session_factory()
        try:
            prop = db.execute(
                select(UserProperty).where(UserProperty.owner == self.owner, UserProperty.key == key)
            ).scalar_one_or_none()
            if prop is None:
                db.add(UserProperty(owner=self.owner, key=key, value=value))
            else:
                prop.value = value
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("failed to write property %s: %s", key, type(e).__name__)
            raise PropertyStoreError(f"DB error: {type(e).__name__}") from e
        finally:
            db.close()

    def delete(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.execute(
                delete(UserProperty).where(UserProperty.owner == self.owner, UserProperty.key == key)
            )
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("failed to delete property %s: %s", key, type(e).__name__)
            raise PropertyStoreError(f"DB error: {type(e).__name__}") from e
        finally:
            db.close()

    def keys(self) -> list[str]:
        db = self.session_factory()
        try:
            return list(
                db.execute(
                    select(UserProperty.key)
                    .where(UserProperty.owner == self.owner)
                    .order_by(UserProperty.key)
                ).scalars()
            )
        finally:
            db.close()
