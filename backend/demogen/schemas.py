import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

ColumnType = Literal["STRING", "INTEGER", "FLOAT", "DATE"]

# BigQuery の型名の揺れを4種類に寄せる
_TYPE_ALIASES = {
    "STRING": "STRING",
    "INTEGER": "INTEGER",
    "INT": "INTEGER",
    "INT64": "INTEGER",
    "FLOAT": "FLOAT",
    "FLOAT64": "FLOAT",
    "NUMERIC": "FLOAT",
    "BIGNUMERIC": "FLOAT",
    "DECIMAL": "FLOAT",
    "DOUBLE": "FLOAT",
    "DATE": "DATE",
}

# 履歴インデックス（1キー）に10件分収まる長さに抑える
MAX_PUBLIC_DATASET_ID_CHARS = 128

_IDENTIFIER_UNSAFE = re.compile(r"[^A-Za-z0-9_]")


def sanitize_identifier(name: str, *, fallback: str = "table") -> str:
    """目的: BigQuery のテーブル/列名として使える文字（英数字と_）だけに揃える。"""
    cleaned = _IDENTIFIER_UNSAFE.sub("_", (name or "").strip())
    if not cleaned.strip("_"):
        return fallback
    if cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned


class _CamelModel(BaseModel):
    # LLM出力・ブラウザからの入力は camelCase、Python側は snake_case で扱う
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerationOptions(_CamelModel):
    row_count: int = 20
    table_count: int = 3
    public_dataset_id: str | None = Field(default=None, max_length=MAX_PUBLIC_DATASET_ID_CHARS)


class GenerateRequest(_CamelModel):
    goal: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class ColumnSpec(_CamelModel):
    name: str
    type: ColumnType = "STRING"
    description: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize_name(cls, v):
        return sanitize_identifier(str(v or ""), fallback="column")

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, v):
        return _TYPE_ALIASES.get(str(v or "").strip().upper(), "STRING")

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v


class TableSpec(_CamelModel):
    name: str
    description: str = ""
    columns: list[ColumnSpec] = Field(default_factory=list, alias="schema")
    csv_data: str = ""

    @field_validator("name", mode="before")
    @classmethod
    def _sanitize_name(cls, v):
        return sanitize_identifier(str(v or ""))

    @field_validator("description", "csv_data", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("columns", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v


class TablePreview(_CamelModel):
    table_name: str
    headers: list[str]
    rows: list[dict[str, str]]


class PlanResult(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    tables: list[TableSpec] = Field(default_factory=list)
    system_instruction: str = ""
    public_dataset_id: str | None = None
    demo_guide: list[str] = Field(default_factory=list)
    data_preview: list[TablePreview] = Field(default_factory=list)

    @field_validator("system_instruction", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("tables", "demo_guide", mode="before")
    @classmethod
    def _none_to_list(cls, v):
        return [] if v is None else v

    @field_validator("public_dataset_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None or not str(v).strip() or str(v).strip().lower() in ("null", "none"):
            return None
        return str(v).strip()


StepStatus = Literal["running", "completed", "error"]


class ProgressStep(_CamelModel):
    step: int
    status: StepStatus
    message: str


class GenerationResult(_CamelModel):
    success: bool
    steps: list[ProgressStep] = Field(default_factory=list)
    error: str | None = None
    dataset_id: str | None = None
    public_dataset_id: str | None = None
    data_preview: list[TablePreview] = Field(default_factory=list)
    system_instruction: str | None = None
    demo_guide: list[str] = Field(default_factory=list)
    setup_script: str | None = None
    tables: list[TableSpec] = Field(default_factory=list)


class HistoryEntry(_CamelModel):
    timestamp: str
    user_goal: str
    options: GenerationOptions
    dataset_id: str | None = None
    public_dataset_id: str | None = None
    storage_id: str
    # get() で実体化した場合のみ入る（インデックスには保存しない）
    result: GenerationResult | None = None
