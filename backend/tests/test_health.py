from demogen.main import app, getHistoryManager, getLlmClient


def testHealthNeedsNoUserOrModel(client):
    """目的: /health はユーザー指定もLLM・履歴ストアも使わずに status=ok を返すことを確認する。"""

    def _mustNotBeUsed():
        raise AssertionError("health check must not build dependencies")

    app.dependency_overrides[getLlmClient] = _mustNotBeUsed
    app.dependency_overrides[getHistoryManager] = _mustNotBeUsed

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}
