"""
Cloud Shell で実行するセットアップスクリプトの生成。

スクリプトの構成（順序は固定。クローンしたエージェントテンプレートが .env の内容に依存する）:
  1. プロジェクトIDの検出（未設定なら中断）
  2. データセット作成、テーブルごとに作成とCSV投入
  3. エージェントテンプレートのクローン
  4. .env / システム指示ファイルの書き出し（APIキーは取得できなければプレースホルダ）
  5. 起動手順の表示
"""

from dataclasses import dataclass, field

from .schemas import TableSpec, sanitize_identifier

API_KEY_PLACEHOLDER = "YOUR_API_KEY_HERE"
DEFAULT_AGENT_TEMPLATE_REPO = "https://github.com/google/adk-samples.git"
DEFAULT_AGENT_TEMPLATE_DIR = "python/agents/data-science"
SYSTEM_INSTRUCTION_FILE = "system_instruction.txt"


@dataclass(frozen=True)
class SetupScriptParams:
    dataset_id: str
    tables: list[TableSpec]
    system_instruction: str
    public_dataset_id: str | None = None
    demo_guide: list[str] = field(default_factory=list)
    bq_location: str = "US"
    agent_template_repo: str = DEFAULT_AGENT_TEMPLATE_REPO
    agent_template_dir: str = DEFAULT_AGENT_TEMPLATE_DIR


def shell_single_quote(value: str) -> str:
    """目的: 任意の文字列を、シェルでそのまま1語として扱えるシングルクォート表現にする。"""
    return "'" + str(value).replace("'", "'\"'\"'") + "'"


def heredoc(body: str, tag: str) -> tuple[str, str]:
    """
    目的: クォート付きヒアドキュメント（<<'TAG'、展開なし）の開始行と本文を返す。
    - 本文中に TAG だけの行があると途中で終わってしまうため、衝突しない TAG を選ぶ
    """
    lines = body.splitlines()
    candidate = tag
    suffix = 0
    while candidate in lines:
        suffix += 1
        candidate = f"{tag}_{suffix}"
    text = body if body.endswith("\n") or not body else body + "\n"
    return f"<<'{candidate}'", f"{text}{candidate}"


def schema_string(table: TableSpec) -> str:
    return ",".join(f"{sanitize_identifier(c.name, fallback='column')}:{c.type}" for c in table.columns)


def _section(title: str) -> list[str]:
    return ["", f"# ---- {title} ----", f'echo "==> {title}"']


def build_setup_script(params: SetupScriptParams) -> str:
    """目的: パラメータからセットアップスクリプト本文を組み立てる（副作用なしの純粋関数）。"""
    datasetId = sanitize_identifier(params.dataset_id, fallback="demo_dataset")
    templateName = params.agent_template_repo.rstrip("/").rsplit("/", 1)[-1].removesuffix(".git")

    lines: list[str] = [
        "#!/bin/bash",
        "# Generated setup script: creates the BigQuery demo dataset and configures the agent.",
        "set -euo pipefail",
        "",
        f"DATASET_ID={shell_single_quote(datasetId)}",
        f"BQ_LOCATION={shell_single_quote(params.bq_location)}",
        f"PUBLIC_DATASET_ID={shell_single_quote(params.public_dataset_id or '')}",
        f"AGENT_TEMPLATE_REPO={shell_single_quote(params.agent_template_repo)}",
        f"AGENT_TEMPLATE_DIR={shell_single_quote(templateName + '/' + params.agent_template_dir.strip('/'))}",
        "WORK_DIR=\"$(pwd)\"",
    ]

    lines += _section("Step 1/5: Detect project")
    lines += [
        'PROJECT_ID="${GOOGLE_CLOUD_PROJECT:-$(gcloud config get-value project 2>/dev/null || true)}"',
        'if [ -z "${PROJECT_ID}" ]; then',
        '  echo "ERROR: No Google Cloud project is set. Run: gcloud config set project <PROJECT_ID>" >&2',
        "  exit 1",
        "fi",
        'echo "Using project: ${PROJECT_ID}"',
    ]

    lines += _section("Step 2/5: Create dataset and tables")
    lines += [
        'bq --location="${BQ_LOCATION}" mk --dataset --force "${PROJECT_ID}:${DATASET_ID}"',
    ]
    for table in params.tables:
        tableName = sanitize_identifier(table.name)
        csvFile = f"/tmp/{datasetId}_{tableName}.csv"
        opener, body = heredoc(table.csv_data, "CSV_EOF")
        lines += [
            "",
            f'echo "Creating table {tableName}"',
            f'bq mk --table --force --description={shell_single_quote(table.description)} '
            f'"${{PROJECT_ID}}:${{DATASET_ID}}.{tableName}" {shell_single_quote(schema_string(table))}',
            f"cat > {shell_single_quote(csvFile)} {opener}",
            body,
            f'bq load --source_format=CSV --skip_leading_rows=1 --replace '
            f'"${{PROJECT_ID}}:${{DATASET_ID}}.{tableName}" {shell_single_quote(csvFile)} '
            f"{shell_single_quote(schema_string(table))}",
        ]

    lines += _section("Step 3/5: Clone agent template")
    lines += [
        f'if [ ! -d {shell_single_quote(templateName)} ]; then',
        '  git clone --depth 1 "${AGENT_TEMPLATE_REPO}"',
        "fi",
        'cd "${WORK_DIR}/${AGENT_TEMPLATE_DIR}"',
    ]

    opener, body = heredoc(params.system_instruction, "INSTRUCTION_EOF")
    lines += _section("Step 4/5: Write configuration")
    lines += [
        "gcloud services enable apikeys.googleapis.com --project=\"${PROJECT_ID}\" >/dev/null 2>&1 || true",
        'API_KEY="$(gcloud services api-keys create --project="${PROJECT_ID}" '
        '--display-name="${DATASET_ID}-agent" --format="value(response.keyString)" 2>/dev/null || true)"',
        'if [ -z "${API_KEY}" ]; then',
        '  echo "WARNING: Could not create an API key. Edit .env and set GOOGLE_API_KEY manually." >&2',
        f'  API_KEY="{API_KEY_PLACEHOLDER}"',
        "fi",
        f"cat > {SYSTEM_INSTRUCTION_FILE} {opener}",
        body,
        "cat > .env <<ENV_EOF",
        "GOOGLE_GENAI_USE_VERTEXAI=1",
        "GOOGLE_CLOUD_PROJECT=${PROJECT_ID}",
        "GOOGLE_CLOUD_LOCATION=us-central1",
        "GOOGLE_API_KEY=${API_KEY}",
        "BQ_COMPUTE_PROJECT_ID=${PROJECT_ID}",
        "BQ_DATA_PROJECT_ID=${PROJECT_ID}",
        "BQ_DATASET_ID=${DATASET_ID}",
        "BQ_PUBLIC_DATASET_ID=${PUBLIC_DATASET_ID}",
        f"SYSTEM_INSTRUCTION_FILE={SYSTEM_INSTRUCTION_FILE}",
        "ENV_EOF",
    ]

    lines += _section("Step 5/5: Next steps")
    lines += [
        'echo ""',
        'echo "Setup complete. Dataset: ${PROJECT_ID}:${DATASET_ID}"',
        'echo "Start the agent with:"',
        'echo "  cd ${WORK_DIR}/${AGENT_TEMPLATE_DIR} && uv sync && uv run adk web"',
    ]
    if params.demo_guide:
        lines.append('echo "Try asking:"')
        for i, question in enumerate(params.demo_guide, start=1):
            lines.append(f"echo {shell_single_quote(f'  {i}. {question}')}")

    return "\n".join(lines) + "\n"
