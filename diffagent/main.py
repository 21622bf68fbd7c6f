"""
Diff Agent Backend - FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import agent, chat, config, context, diff, sessions
from .services.config_manager import ConfigManager


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager - startup and shutdown logic"""
    print("[Backend] Starting Diff Agent Backend...")
    config_manager = ConfigManager.get_instance()
    print(f"[Backend] ConfigManager initialized ({config_manager.config_dir})")
    print(f"[Backend] Workspace root: {config_manager.get('workspaceRoot')}")
    print(f"[Backend] Provider: {config_manager.get('provider')}")

    yield
    print("[Backend] Shutting down Diff Agent Backend...")


app = FastAPI(
    title="Diff Agent Backend",
    description="Unified diff apply/undo and tool-using agent backend for IDE plugins",
    version="1.0.0",
    lifespan=lifespan,
)

# IDE plugins call from localhost webviews
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(agent.router, prefix="/api/agent", tags=["agent"])
app.include_router(diff.router, prefix="/api/diff", tags=["diff"])
app.include_router(context.router, prefix="/api/context", tags=["context"])
app.include_router(sessions.router, prefix="/api/sessions", tags=["sessions"])
app.include_router(config.router, prefix="/api/config", tags=["config"])


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": "diffagent-backend"}


def run():
    import uvicorn

    server = ConfigManager.get_instance().get("server", {})
    uvicorn.run(app, host=server.get("host", "127.0.0.1"), port=server.get("port", 8000))


if __name__ == "__main__":
    run()
