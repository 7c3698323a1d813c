import json
import logging
import re

from pydantic import ValidationError

from .llm import LLMClient
from .preview import build_data_preview, split_csv_lines
from .repair import repair_truncated_json
from .retry import DEFAULT_BASE_DELAY_SECONDS, DEFAULT_MAX_ATTEMPTS, call_with_retry
from .schemas import GenerationOptions, PlanResult

logger = logging.getLogger(__name__)

MAX_ROW_COUNT = 100
MAX_TABLE_COUNT = 10
DEMO_GUIDE_LENGTH = 5

# 解析失敗時にログへ残す生出力の長さ（先頭/末尾それぞれ）
_LOG_SNIPPET_CHARS = 500

_CODE_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z0-9_-]*\s*\n?")
_CODE_FENCE_CLOSE = re.compile(r"\n?\s*```\s*$")


class PlanError(RuntimeError):
    """プラン生成（LLM出力の解釈・検証）に関する例外の基底。"""


class PlanParseError(PlanError):
    pass


class PlanValidationError(PlanError):
    pass


class NoTablesError(PlanValidationError):
    def __init__(self):
        super().__init__("No tables were generated. Please try again with a more specific goal.")


class IncompleteTableError(PlanValidationError):
    def __init__(self, table_name: str):
        super().__init__(f"Incomplete table data: {table_name} (missing schema or csvData)")
        self.table_name = table_name


def clamp_options(options: GenerationOptions) -> GenerationOptions:
    rowCount = min(MAX_ROW_COUNT, max(1, int(options.row_count)))
    tableCount = min(MAX_TABLE_COUNT, max(1, int(options.table_count)))
    publicDatasetId = (options.public_dataset_id or "").strip() or None
    return GenerationOptions(
        row_count=rowCount,
        table_count=tableCount,
        public_dataset_id=publicDatasetId,
    )


def build_plan_prompt(goal: str, options: GenerationOptions) -> str:
    """
    目的: ユーザーの目的文から、データセットとエージェント設定を生成させる指示文を組み立てる。
    - 出力形式（tables / systemInstruction / publicDatasetId / demoGuide）を明示する
    - 行数・テーブル数の上限を埋め込む
    - 出力言語は目的文の言語に合わせさせる
    """
    options = clamp_options(options)
    if options.public_dataset_id:
        publicDatasetNote = (
            f'The agent will also have read access to the public BigQuery dataset "{options.public_dataset_id}". '
            "Design the tables so they can be joined with or compared against it, "
            f'and set "publicDatasetId" to "{options.public_dataset_id}".'
        )
    else:
        publicDatasetNote = 'No public dataset is used. Set "publicDatasetId" to null.'

    shape = {
        "tables": [
            {
                "name": "snake_case_table_name",
                "description": "What the table contains",
                "schema": [
                    {"name": "column_name", "type": "STRING | INTEGER | FLOAT | DATE", "description": "..."}
                ],
                "csvData": "column_name,...\\nvalue,...\\n",
            }
        ],
        "systemInstruction": "System instruction for a BigQuery data agent that answers questions about these tables",
        "publicDatasetId": "project.dataset or null",
        "demoGuide": ["question 1", "question 2", "question 3", "question 4", "question 5"],
    }

    return (
        "You are designing a realistic demo dataset for a data analysis AI agent on BigQuery.\n"
        "\n"
        f"Business goal:\n{goal.strip()}\n"
        "\n"
        "Requirements:\n"
        f"- Create exactly {options.table_count} related tables.\n"
        f"- Each table must contain at most {options.row_count} data rows (plus one header line).\n"
        "- Use snake_case identifiers made of letters, digits and underscores for table and column names.\n"
        "- Column types must be one of STRING, INTEGER, FLOAT, DATE. Dates use YYYY-MM-DD.\n"
        "- csvData is a single JSON string: a header line matching the schema order, then data rows, "
        "separated by \\n. Quote values that contain commas.\n"
        "- Use consistent keys across tables so they can be joined.\n"
        "- systemInstruction tells the agent its role, the tables and how they relate.\n"
        f"- demoGuide lists exactly {DEMO_GUIDE_LENGTH} questions a presenter can ask the agent, "
        "from simple to advanced.\n"
        f"- {publicDatasetNote}\n"
        "- Write all descriptions, systemInstruction, demoGuide and text values in the same language "
        "as the business goal. Identifiers stay in English.\n"
        "\n"
        "Output only one JSON object with this shape, without any explanation:\n"
        f"{json.dumps(shape, ensure_ascii=False, indent=2)}\n"
    )


def strip_code_fences(text: str) -> str:
    stripped = (text or "").strip()
    stripped = _CODE_FENCE_OPEN.sub("", stripped, count=1)
    stripped = _CODE_FENCE_CLOSE.sub("", stripped, count=1)
    return stripped.strip()


def _snippet(text: str) -> str:
    if len(text) <= _LOG_SNIPPET_CHARS * 2:
        return text
    return f"{text[:_LOG_SNIPPET_CHARS]} ... [{len(text)} chars] ... {text[-_LOG_SNIPPET_CHARS:]}"


def _cap_rows(csv_data: str, row_count: int) -> str:
    lines = split_csv_lines(csv_data)
    if len(lines) <= row_count + 1:
        return csv_data
    return "\n".join(lines[: row_count + 1]) + "\n"


def parse_plan(raw: str, options: GenerationOptions) -> PlanResult:
    """目的: LLMの生出力をコードフェンス除去→修復→パース→検証済みの PlanResult に変換する。"""
    options = clamp_options(options)
    text = repair_truncated_json(strip_code_fences(raw))
    try:
        data = json.loads(text)
    except ValueError as e:
        logger.error("could not parse model output as JSON: %s | output=%s", e, _snippet(raw))
        raise PlanParseError(
            "Could not interpret the model output as JSON. "
            "Try reducing the number of rows or tables and generate again."
        ) from e

    if not isinstance(data, dict):
        logger.error("model output is not a JSON object | output=%s", _snippet(raw))
        raise PlanParseError(
            "Could not interpret the model output (expected a JSON object). "
            "Try reducing the number of rows or tables and generate again."
        )

    try:
        plan = PlanResult.model_validate(data)
    except ValidationError as e:
        logger.error("model output has unexpected shape: %s | output=%s", e, _snippet(raw))
        raise PlanParseError(
            "Could not interpret the model output (unexpected structure). "
            "Try reducing the number of rows or tables and generate again."
        ) from e

    tables = [
        t.model_copy(update={"csv_data": _cap_rows(t.csv_data, options.row_count)})
        for t in plan.tables
    ]
    return plan.model_copy(
        update={
            "tables": tables,
            "public_dataset_id": plan.public_dataset_id or options.public_dataset_id,
            # 多い分は切り捨てる（少ない場合はそのまま使う）
            "demo_guide": list(plan.demo_guide[:DEMO_GUIDE_LENGTH]),
            "data_preview": build_data_preview(tables),
        }
    )


def plan_dataset(
    goal: str,
    options: GenerationOptions,
    llm: LLMClient,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    sleep=None,
) -> PlanResult:
    prompt = build_plan_prompt(goal, options)
    retryKwargs = {"max_attempts": max_attempts, "base_delay": base_delay}
    if sleep is not None:
        retryKwargs["sleep"] = sleep
    raw = call_with_retry(lambda: llm.generate(prompt), **retryKwargs)
    logger.info("model output received (%d chars)", len(raw))
    return parse_plan(raw, options)


def validate_plan(plan: PlanResult) -> None:
    """目的: スクリプト生成の前に、テーブルが揃っているかを確認する（不足があれば即失敗）。"""
    if not plan.tables:
        raise NoTablesError()
    for table in plan.tables:
        if not table.columns or not table.csv_data.strip():
            raise IncompleteTableError(table.name)
