import os
from fastapi import Depends, FastAPI, Header, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware

from .chunked import ChunkedBlobError, ChunkedStore
from .config import AppConfig
from .db import SessionLocal, engine
from .history import HistoryIndexError, HistoryManager
from .kvstore import PropertyStoreError, SqlPropertyStore
from .llm import LLMClient, LLMConfig, LLMError, build_llm_client
from .logger import setup_logging
from .models import Base
from .schemas import GenerateRequest
from .service import generate_demo

appConfig = AppConfig.from_env()
setup_logging(appConfig.log_level)

app = FastAPI(title="BigQuery Agent Demo Generator", version="0.1.0")

# CORS（ブラウザアクセス向け）
# 例: "http://localhost:3001,http://127.0.0.1:3001" のようにカンマ区切り
originsEnv = os.getenv("CORS_ALLOW_ORIGINS", "http://localhost:3001")
allowOrigins = [o.strip() for o in originsEnv.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowOrigins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 起動時にテーブルが無ければ作る（本番はAlembicで管理する）
Base.metadata.create_all(bind=engine)


def getAppConfig() -> AppConfig:
    return appConfig


def getLlmClient() -> LLMClient:
    """目的: 環境変数の設定からLLMクライアントを構築する（テストでは override する）。"""
    try:
        return build_llm_client(LLMConfig.from_env())
    except LLMError as e:
        raise HTTPException(
            status_code=503,
            detail={"error": {"code": e.code, "message": str(e), "retryable": e.retryable}},
        )


def getOwner(x_user_id: str | None = Header(default=None)) -> str:
    """目的: 履歴のキー空間を分けるため、呼び出しユーザーを特定する。"""
    owner = (x_user_id or "").strip()
    return owner[:255] or "anonymous"


def getHistoryManager(
    owner: str = Depends(getOwner),
    config: AppConfig = Depends(getAppConfig),
) -> HistoryManager:
    store = SqlPropertyStore(SessionLocal, owner)
    return HistoryManager(
        store,
        ChunkedStore(store, chunk_size=config.chunk_size),
        max_entries=config.history_max_entries,
    )


def _storage_error(e: Exception) -> HTTPException:
    return HTTPException(status_code=500, detail=f"Storage error: {e}")


@app.get("/health")
def health():
    """目的: 稼働確認用のヘルスチェック結果を返す。"""
    return {"status": "ok"}


@app.post("/generate")
def generate(
    request: GenerateRequest,
    llm: LLMClient = Depends(getLlmClient),
    history: HistoryManager = Depends(getHistoryManager),
    config: AppConfig = Depends(getAppConfig),
):
    """目的: 目的文からデータセット・エージェント設定・セットアップスクリプトを生成して返す。"""
    goal = request.goal.strip()
    if not goal:
        raise HTTPException(status_code=400, detail="goal must not be empty")

    result = generate_demo(goal, request.options, llm, history, config=config)
    return result.model_dump(mode="json")


@app.get("/history")
def list_history(history: HistoryManager = Depends(getHistoryManager)):
    """目的: 生成履歴の一覧（本体を含まない軽量な情報）を新しい順に返す。"""
    try:
        entries = history.list()
    except (HistoryIndexError, PropertyStoreError) as e:
        raise _storage_error(e)
    return [e.model_dump(mode="json", exclude={"result"}) for e in entries]


@app.get("/history/{timestamp}")
def get_history(timestamp: str, history: HistoryManager = Depends(getHistoryManager)):
    """目的: 指定した履歴を、生成結果本体を含めて返す。"""
    try:
        entry = history.get(timestamp)
    except (HistoryIndexError, ChunkedBlobError, PropertyStoreError) as e:
        raise _storage_error(e)
    if entry is None:
        raise HTTPException(status_code=404, detail="History entry not found")
    return entry.model_dump(mode="json")


@app.delete("/history/{timestamp}", status_code=204)
def delete_history(timestamp: str, history: HistoryManager = Depends(getHistoryManager)):
    """目的: 指定した履歴と、その本体（分割保存されたデータ）を削除する。"""
    try:
        history.remove(timestamp)
    except (HistoryIndexError, ChunkedBlobError, PropertyStoreError) as e:
        raise _storage_error(e)
    return Response(status_code=204)


@app.delete("/history", status_code=204)
def clear_history(history: HistoryManager = Depends(getHistoryManager)):
    """目的: すべての履歴と本体を削除する。"""
    try:
        history.clear()
    except (HistoryIndexError, ChunkedBlobError, PropertyStoreError) as e:
        raise _storage_error(e)
    return Response(status_code=204)
