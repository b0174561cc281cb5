"""
FastAPI 应用入口点。
"""

from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger

from src.server.config import config
from src.server.selfsigned.router import router as selfsigned_router

FRONTEND_DIR = Path("dist")

app = FastAPI(title="Self-signed Certificate Generator")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 包含自签名证书签发服务的路由
app.include_router(selfsigned_router, prefix="/v1")

logger.info(f"config: {config.model_dump_json(indent=4)}")


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


# 前端表单构建产物存在时才挂载
if FRONTEND_DIR.is_dir():

    @app.get("/{path}")
    async def index(path: str):
        return FileResponse(path=FRONTEND_DIR / "index.html")

    app.mount("/", StaticFiles(directory=FRONTEND_DIR, html=True), name="frontend")
