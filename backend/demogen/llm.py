import json
import os
from dataclasses import dataclass
from typing import Protocol

import httpx


class LLMError(RuntimeError):
    """
    LLM呼び出しに関する例外の基底。
    - code/retryable を持たせ、進捗ステップやAPIレスポンスで一貫したエラー表示にできるようにする。
    """

    code: str = "LLM_ERROR"
    retryable: bool = False

    def __init__(
        self,
        message: str = "LLM error",
        *,
        code: str | None = None,
        retryable: bool | None = None,
    ):
        super().__init__(message)
        if code is not None:
            self.code = code
        if retryable is not None:
            self.retryable = retryable


class LLMTimeoutError(LLMError):
    code = "LLM_TIMEOUT"
    retryable = True


class LLMAuthError(LLMError):
    code = "LLM_AUTH_ERROR"
    retryable = False


class LLMRateLimitError(LLMError):
    code = "LLM_RATE_LIMIT"
    retryable = True


class LLMInputTooLargeError(LLMError):
    code = "LLM_INPUT_TOO_LARGE"
    retryable = False


class LLMProviderError(LLMError):
    code = "LLM_PROVIDER_ERROR"
    retryable = True


class LLMClient(Protocol):
    """LLM呼び出しのインターフェース（実装差し替え可能にするための境界）。"""

    def generate(self, prompt: str) -> str:  # pragma: no cover (実装側で検証する)
        """prompt を入力に、LLMの生成結果テキストを返す。"""


@dataclass(frozen=True)
class LLMConfig:
    provider: str
    api_key: str | None
    model: str
    timeout_seconds: float
    temperature: float = 0.4
    max_output_tokens: int = 65535
    project_id: str | None = None
    location: str = "us-central1"
    access_token: str | None = None

    @staticmethod
    def from_env() -> "LLMConfig":
        provider = os.getenv("LLM_PROVIDER", "stub").strip().lower()
        api_key = os.getenv("LLM_API_KEY")
        model = os.getenv("LLM_MODEL", "stub").strip()
        # 生成量が多いため、分析用途より長めに待つ
        timeout_seconds = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))
        return LLMConfig(
            provider=provider,
            api_key=api_key,
            model=model,
            timeout_seconds=timeout_seconds,
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.4")),
            max_output_tokens=int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "65535")),
            project_id=os.getenv("LLM_PROJECT_ID") or None,
            location=os.getenv("LLM_LOCATION", "us-central1").strip(),
            access_token=os.getenv("LLM_ACCESS_TOKEN") or None,
        )


STUB_PLAN = {
    "tables": [
        {
            "name": "stores",
            "description": "Store master data",
            "schema": [
                {"name": "store_id", "type": "STRING", "description": "Store identifier"},
                {"name": "city", "type": "STRING", "description": "City where the store is located"},
                {"name": "opened_on", "type": "DATE", "description": "Opening date"},
            ],
            "csvData": "store_id,city,opened_on\nS001,Tokyo,2020-04-01\nS002,Osaka,2021-07-15\n",
        },
        {
            "name": "daily_sales",
            "description": "Daily sales per store",
            "schema": [
                {"name": "store_id", "type": "STRING", "description": "Store identifier"},
                {"name": "sales_date", "type": "DATE", "description": "Business date"},
                {"name": "revenue", "type": "FLOAT", "description": "Revenue in USD"},
            ],
            "csvData": "store_id,sales_date,revenue\nS001,2024-01-01,1520.5\nS002,2024-01-01,980.0\n",
        },
    ],
    "systemInstruction": "You are a retail analytics assistant. Answer questions using the stores and daily_sales tables.",
    "publicDatasetId": None,
    "demoGuide": [
        "How many stores do we have?",
        "Which store had the highest revenue?",
        "Show revenue by city.",
        "When did each store open?",
        "Summarize sales on 2024-01-01.",
    ],
}


class StubLLMClient:
    """外部APIに接続しないスタブ実装（テスト/開発用）。"""

    def __init__(self, config: LLMConfig):
        self.config = config

    def generate(self, prompt: str) -> str:
        # prompt は評価せず、固定のプランJSONを返す（ローカルで一連の流れを確認するため）。
        return json.dumps(STUB_PLAN, ensure_ascii=False)


def build_llm_client(config: LLMConfig) -> LLMClient:
    provider = (config.provider or "").strip().lower()
    if provider in ("stub", "none", "disabled"):
        return StubLLMClient(config)

    if provider in ("gemini", "google_ai_studio", "google-ai-studio"):
        return GeminiAiStudioClient(config)

    if provider in ("vertex", "vertex_ai", "vertex-ai"):
        return VertexAiClient(config)

    raise LLMError(f"Unsupported LLM_PROVIDER: {config.provider}")


def _build_payload(prompt: str, config: LLMConfig) -> dict:
    return {
        "contents": [
            {
                "role": "user",
                "parts": [{"text": prompt}],
            }
        ],
        "generationConfig": {
            "temperature": config.temperature,
            "maxOutputTokens": config.max_output_tokens,
        },
    }


def _raise_for_status(resp, provider_name: str) -> None:
    """HTTPエラーを LLMError の分類にマップする（プラットフォームのエラーメッセージを保持する）。"""
    if resp.status_code < 400:
        return

    msg = None
    try:
        j = resp.json()
        if isinstance(j, dict) and isinstance(j.get("error"), dict):
            msg = j["error"].get("message")
    except Exception:
        msg = None

    message = msg or f"{provider_name} API error (status={resp.status_code})"
    if resp.status_code in (401, 403):
        raise LLMAuthError(message)
    if resp.status_code == 429:
        raise LLMRateLimitError(message)
    if resp.status_code == 413:
        raise LLMInputTooLargeError(message)
    if resp.status_code == 400 and any(
        k in message.lower()
        for k in ("too large", "too long", "exceed", "exceeded", "maximum", "limit")
    ):
        raise LLMInputTooLargeError(message)
    if 500 <= resp.status_code <= 599:
        raise LLMProviderError(message)
    raise LLMError(message)


def _extract_text(resp, provider_name: str) -> str:
    try:
        data = resp.json()
    except Exception as e:
        raise LLMProviderError(f"{provider_name} API returned non-JSON response") from e

    try:
        candidates = data.get("candidates") or []
        if not candidates:
            raise LLMProviderError(f"{provider_name} API returned no candidates")
        content = candidates[0].get("content") or {}
        parts = content.get("parts") or []
        texts = []
        for p in parts:
            if isinstance(p, dict) and isinstance(p.get("text"), str):
                texts.append(p["text"])
        # JSON を分割して返すことがあるため、改行を挟まずに連結する
        out = "".join(texts)
        if not out.strip():
            raise LLMProviderError(f"{provider_name} API returned empty text")
        return out
    except LLMError:
        raise
    except Exception as e:
        raise LLMProviderError(f"Failed to parse {provider_name} response") from e


def _post(url: str, *, config: LLMConfig, provider_name: str, **kwargs):
    timeout = httpx.Timeout(config.timeout_seconds)
    try:
        with httpx.Client(timeout=timeout) as client:
            return client.post(url, **kwargs)
    except httpx.TimeoutException as e:
        raise LLMTimeoutError(f"{provider_name} request timed out") from e
    except httpx.RequestError as e:
        # DNS/connection reset etc.
        raise LLMProviderError(f"{provider_name} request failed: {type(e).__name__}") from e


class GeminiAiStudioClient:
    """
    Google AI Studio (Gemini API) 用の最小クライアント。
    - 外部SDKに依存せず、Generative Language API を httpx で叩く
    """

    def __init__(self, config: LLMConfig):
        if not config.api_key:
            raise LLMAuthError("LLM_API_KEY is required for Gemini (Google AI Studio)")
        self.config = config

        # AI Studio Gemini API (Generative Language) base URL
        self.base_url = os.getenv(
            "GEMINI_API_BASE_URL", "https://generativelanguage.googleapis.com"
        ).rstrip("/")

    def generate(self, prompt: str) -> str:
        model = (self.config.model or "").strip() or "gemini-2.5-flash"
        if not model.startswith("models/"):
            model = f"models/{model}"

        url = f"{self.base_url}/v1beta/{model}:generateContent"
        resp = _post(
            url,
            config=self.config,
            provider_name="Gemini",
            params={"key": self.config.api_key},
            json=_build_payload(prompt, self.config),
        )
        _raise_for_status(resp, "Gemini")
        return _extract_text(resp, "Gemini")


class VertexAiClient:
    """
    Vertex AI (publishers/google/models) 用の最小クライアント。
    - アクセストークンの取得は呼び出し側（gcloud auth print-access-token 等）の責務
    """

    def __init__(self, config: LLMConfig):
        if not config.project_id:
            raise LLMError("LLM_PROJECT_ID is required for Vertex AI")
        if not config.access_token:
            raise LLMAuthError("LLM_ACCESS_TOKEN is required for Vertex AI")
        self.config = config

    def generate(self, prompt: str) -> str:
        model = (self.config.model or "").strip() or "gemini-2.5-flash"
        location = self.config.location or "us-central1"
        url = (
            f"https://{location}-aiplatform.googleapis.com/v1/projects/{self.config.project_id}"
            f"/locations/{location}/publishers/google/models/{model}:generateContent"
        )
        resp = _post(
            url,
            config=self.config,
            provider_name="Vertex AI",
            headers={"Authorization": f"Bearer {self.config.access_token}"},
            json=_build_payload(prompt, self.config),
        )
        _raise_for_status(resp, "Vertex AI")
        return _extract_text(resp, "Vertex AI")
