import json

import pytest

from demogen.llm import LLMAuthError, LLMConfig, LLMError, VertexAiClient, build_llm_client


def testBuildLlmClientReturnsStubByDefault(monkeypatch):
    """目的: LLM_PROVIDER未設定時にスタブ実装が使われ、プランとして読めるJSONを返すことを確認する。"""
    monkeypatch.delenv("LLM_PROVIDER", raising=False)
    monkeypatch.delenv("LLM_MODEL", raising=False)
    monkeypatch.delenv("LLM_TIMEOUT_SECONDS", raising=False)
    config = LLMConfig.from_env()
    client = build_llm_client(config)

    data = json.loads(client.generate("x"))
    assert len(data["tables"]) == 2
    assert len(data["demoGuide"]) == 5


def testLlmConfigReadsGenerationSettingsFromEnv(monkeypatch):
    """目的: temperature / maxOutputTokens の既定値と、環境変数での上書きを確認する。"""
    monkeypatch.delenv("LLM_TEMPERATURE", raising=False)
    monkeypatch.delenv("LLM_MAX_OUTPUT_TOKENS", raising=False)
    config = LLMConfig.from_env()
    assert config.temperature == 0.4
    assert config.max_output_tokens == 65535

    monkeypatch.setenv("LLM_TEMPERATURE", "0.1")
    monkeypatch.setenv("LLM_MAX_OUTPUT_TOKENS", "1024")
    config = LLMConfig.from_env()
    assert config.temperature == 0.1
    assert config.max_output_tokens == 1024


def testBuildLlmClientRejectsUnsupportedProvider():
    """目的: 未対応のLLM_PROVIDERを指定した場合に例外となることを確認する。"""
    config = LLMConfig(provider="openai", api_key="dummy", model="gpt", timeout_seconds=1)
    with pytest.raises(LLMError):
        build_llm_client(config)


def testBuildLlmClientGeminiRequiresApiKey():
    """目的: Gemini（AI Studio）利用時はAPIキーが必須であることを確認する。"""
    config = LLMConfig(provider="gemini", api_key=None, model="gemini-2.5-flash", timeout_seconds=1)
    with pytest.raises(LLMAuthError):
        build_llm_client(config)


def testBuildLlmClientVertexRequiresProjectAndToken():
    """目的: Vertex AI 利用時はプロジェクトIDとアクセストークンが必須であることを確認する。"""
    noProject = LLMConfig(provider="vertex", api_key=None, model="gemini-2.5-flash", timeout_seconds=1)
    with pytest.raises(LLMError):
        build_llm_client(noProject)

    noToken = LLMConfig(
        provider="vertex", api_key=None, model="gemini-2.5-flash", timeout_seconds=1, project_id="p"
    )
    with pytest.raises(LLMAuthError):
        build_llm_client(noToken)

    ok = LLMConfig(
        provider="vertex",
        api_key=None,
        model="gemini-2.5-flash",
        timeout_seconds=1,
        project_id="p",
        access_token="token",
    )
    assert isinstance(build_llm_client(ok), VertexAiClient)
