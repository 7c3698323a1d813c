from sqlalchemy import String, Integer, Text, DateTime, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base

# 1キーあたりの値の上限（文字数）。大きなデータは chunked.ChunkedStore で分割して保存する
MAX_PROPERTY_VALUE_CHARS = 9000

class UserProperty(Base):
    __tablename__ = "user_properties"
    __table_args__ = (UniqueConstraint("owner", "key", name="uq_user_properties_owner_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
