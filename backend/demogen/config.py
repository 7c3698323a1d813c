import os
from dataclasses import dataclass

from .chunked import DEFAULT_CHUNK_SIZE
from .history import DEFAULT_MAX_ENTRIES
from .retry import DEFAULT_BASE_DELAY_SECONDS, DEFAULT_MAX_ATTEMPTS
from .script import DEFAULT_AGENT_TEMPLATE_DIR, DEFAULT_AGENT_TEMPLATE_REPO


@dataclass(frozen=True)
class AppConfig:
    history_max_entries: int = DEFAULT_MAX_ENTRIES
    chunk_size: int = DEFAULT_CHUNK_SIZE
    llm_max_attempts: int = DEFAULT_MAX_ATTEMPTS
    llm_retry_base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    agent_template_repo: str = DEFAULT_AGENT_TEMPLATE_REPO
    agent_template_dir: str = DEFAULT_AGENT_TEMPLATE_DIR
    bq_location: str = "US"
    log_level: str = "INFO"

    @staticmethod
    def from_env() -> "AppConfig":
        return AppConfig(
            history_max_entries=int(os.getenv("HISTORY_MAX_ENTRIES", str(DEFAULT_MAX_ENTRIES))),
            chunk_size=int(os.getenv("CHUNK_SIZE", str(DEFAULT_CHUNK_SIZE))),
            llm_max_attempts=int(os.getenv("LLM_MAX_ATTEMPTS", str(DEFAULT_MAX_ATTEMPTS))),
            llm_retry_base_delay=float(
                os.getenv("LLM_RETRY_BASE_DELAY_SECONDS", str(DEFAULT_BASE_DELAY_SECONDS))
            ),
            agent_template_repo=os.getenv("AGENT_TEMPLATE_REPO", DEFAULT_AGENT_TEMPLATE_REPO).strip(),
            agent_template_dir=os.getenv("AGENT_TEMPLATE_DIR", DEFAULT_AGENT_TEMPLATE_DIR).strip(),
            bq_location=os.getenv("BQ_LOCATION", "US").strip(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        )
