import logging
import time
from typing import Callable, TypeVar

from tenacity import Retrying, stop_after_attempt, wait_incrementing

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0


def _log_before_sleep(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "attempt %d failed (%s: %s); retrying in %.1fs",
        retry_state.attempt_number,
        type(exc).__name__,
        exc,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


def call_with_retry(
    operation: Callable[[], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    目的: 引数なしの operation を最大 max_attempts 回まで呼び出す。
    - n 回目の失敗後は n × base_delay 秒待ってから再試行する（ジッターなし）
    - すべて失敗した場合は最後の例外をそのまま送出する（途中の例外は捨てる）
    - 冪等な呼び出し（LLMの生成リクエスト）専用。副作用のある処理には使わないこと
    """
    retrying = Retrying(
        stop=stop_after_attempt(max(1, int(max_attempts))),
        wait=wait_incrementing(start=base_delay, increment=base_delay),
        sleep=sleep,
        before_sleep=_log_before_sleep,
        reraise=True,
    )
    return retrying(operation)
