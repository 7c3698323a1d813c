import copy
import os
import tempfile

# demogen.db はインポート時にエンジンを作るため、先にテスト用DBを指定しておく
_testDbDir = tempfile.mkdtemp(prefix="demogen-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_testDbDir, 'test.db')}"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import text

from demogen.db import engine
from demogen.main import app
from demogen.models import Base


SAMPLE_PLAN = {
    "tables": [
        {
            "name": "stations",
            "description": "Bicycle rental stations",
            "schema": [
                {"name": "station_id", "type": "STRING", "description": "Station identifier"},
                {"name": "district", "type": "STRING", "description": "District name"},
                {"name": "capacity", "type": "INTEGER", "description": "Number of docks"},
            ],
            "csvData": "station_id,district,capacity\nST01,\"Shibuya, Tokyo\",20\nST02,Shinjuku,15\n",
        },
        {
            "name": "rentals",
            "description": "Hourly rentals per station",
            "schema": [
                {"name": "station_id", "type": "STRING", "description": "Station identifier"},
                {"name": "rental_date", "type": "DATE", "description": "Rental date"},
                {"name": "rentals", "type": "INTEGER", "description": "Number of rentals"},
            ],
            "csvData": (
                "station_id,rental_date,rentals\n"
                "ST01,2024-04-01,31\n"
                "ST01,2024-04-02,28\n"
                "ST02,2024-04-01,12\n"
                "ST02,2024-04-02,17\n"
                "ST01,2024-04-03,40\n"
                "ST02,2024-04-03,9\n"
            ),
        },
    ],
    "systemInstruction": "You help operators forecast bicycle rental demand.",
    "publicDatasetId": None,
    "demoGuide": [
        "Which station has the most rentals?",
        "Show rentals by district.",
        "What is the daily trend?",
        "Which stations are near capacity?",
        "Forecast next week's demand.",
    ],
}


@pytest.fixture()
def samplePlan() -> dict:
    """目的: LLMが返す想定のプランJSON（dict）を、テストごとに独立したコピーで提供する。"""
    return copy.deepcopy(SAMPLE_PLAN)


class FakeLlm:
    """目的: 決まった応答（または例外）を返し、呼び出し回数とプロンプトを記録する。"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.prompts: list[str] = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture()
def fakeLlmFactory():
    return FakeLlm


@pytest.fixture()
def client() -> TestClient:
    """目的: FastAPIのTestClientを提供し、startup/shutdownイベントを確実に実行する。"""
    with TestClient(app) as testClient:
        yield testClient


@pytest.fixture(autouse=True)
def cleanDatabase() -> None:
    """目的: 各テストが独立して再現できるよう、テストごとにDBをクリーンにする。"""
    Base.metadata.create_all(bind=engine)
    yield

    with engine.begin() as connection:
        connection.execute(text("DELETE FROM user_properties"))
    app.dependency_overrides.clear()
