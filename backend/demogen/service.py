import logging
import uuid
from datetime import datetime, timezone

from .config import AppConfig
from .history import HistoryManager
from .llm import LLMClient, LLMError
from .planner import clamp_options, plan_dataset, validate_plan
from .schemas import GenerationOptions, GenerationResult, ProgressStep
from .script import SetupScriptParams, build_setup_script

logger = logging.getLogger(__name__)


def new_dataset_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    return f"demo_{stamp}_{uuid.uuid4().hex[:6]}"


class _Progress:
    def __init__(self):
        self.steps: list[ProgressStep] = []

    def start(self, message: str) -> None:
        self.steps.append(ProgressStep(step=len(self.steps) + 1, status="running", message=message))

    def complete(self, message: str | None = None) -> None:
        current = self.steps[-1]
        current.status = "completed"
        if message:
            current.message = message

    def fail(self, message: str) -> None:
        if not self.steps:
            self.start("Starting generation")
        current = self.steps[-1]
        current.status = "error"
        current.message = message

    def snapshot(self) -> list[ProgressStep]:
        return [s.model_copy() for s in self.steps]


def _error_message(exc: Exception) -> str:
    if isinstance(exc, LLMError):
        return f"Model call failed ({exc.code}): {exc}"
    return str(exc) or type(exc).__name__


def generate_demo(
    goal: str,
    options: GenerationOptions,
    llm: LLMClient,
    history: HistoryManager | None = None,
    *,
    config: AppConfig | None = None,
    sleep=None,
    dataset_id_factory=new_dataset_id,
) -> GenerationResult:
    """
    目的: 目的文からプラン生成 → 検証 → スクリプト生成 → 履歴保存までを一括で行う。
    - 例外は呼び出し側に漏らさず、最後の進捗ステップを error にして success=False で返す
    - 成功時はすべての項目が埋まった結果だけを返す（途中結果は返さない）
    """
    config = config or AppConfig()
    options = clamp_options(options)
    progress = _Progress()

    try:
        progress.start("Generating dataset plan with the model")
        plan = plan_dataset(
            goal,
            options,
            llm,
            max_attempts=config.llm_max_attempts,
            base_delay=config.llm_retry_base_delay,
            sleep=sleep,
        )
        progress.complete(f"Generated {len(plan.tables)} table(s)")

        progress.start("Validating generated tables")
        validate_plan(plan)
        progress.complete("All tables have a schema and data")

        progress.start("Building setup script")
        datasetId = dataset_id_factory()
        script = build_setup_script(
            SetupScriptParams(
                dataset_id=datasetId,
                tables=list(plan.tables),
                system_instruction=plan.system_instruction,
                public_dataset_id=plan.public_dataset_id,
                demo_guide=list(plan.demo_guide),
                bq_location=config.bq_location,
                agent_template_repo=config.agent_template_repo,
                agent_template_dir=config.agent_template_dir,
            )
        )
        progress.complete(f"Setup script ready for dataset {datasetId}")

        if history is not None:
            progress.start("Saving to history")

        # 履歴に保存される結果では、保存ステップは running のまま
        result = GenerationResult(
            success=True,
            steps=progress.snapshot(),
            error=None,
            dataset_id=datasetId,
            public_dataset_id=plan.public_dataset_id,
            data_preview=list(plan.data_preview),
            system_instruction=plan.system_instruction,
            demo_guide=list(plan.demo_guide),
            setup_script=script,
            tables=list(plan.tables),
        )

        if history is not None:
            history.record(goal, options, result)
            progress.complete("Saved to history")
            result = result.model_copy(update={"steps": progress.snapshot()})

        logger.info("generated dataset %s with %d table(s)", datasetId, len(plan.tables))
        return result
    except Exception as e:
        message = _error_message(e)
        logger.exception("generation failed: %s", message)
        progress.fail(message)
        return GenerationResult(success=False, steps=progress.snapshot(), error=message)
