"""Configuration API endpoints"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from ..services.config_manager import ConfigManager
from ..services.llm_service import LLMService

router = APIRouter()

PROVIDERS = ("ollama", "openai", "vllm")


class ConfigUpdateRequest(BaseModel):
    """Request to update configuration"""

    provider: str | None = None
    ollama: dict | None = None
    openai: dict | None = None
    vllm: dict | None = None
    workspaceRoot: str | None = None
    contextSize: int | None = None
    maxTokens: int | None = None
    chunkSize: int | None = None
    requestTimeoutMs: int | None = None
    requireTerminalCommandConfirmation: bool | None = None
    enableVerboseLogs: bool | None = None


class ConfigResponse(BaseModel):
    """Configuration response"""

    provider: str
    ollama: dict
    openai: dict
    vllm: dict
    workspaceRoot: str
    contextSize: int
    maxTokens: int
    chunkSize: int
    requestTimeoutMs: int
    requireTerminalCommandConfirmation: bool
    enableVerboseLogs: bool


class ValidateResponse(BaseModel):
    """Validation response"""

    valid: bool
    message: str
    provider: str


def mask_key(key: str) -> str:
    if not key:
        return ""
    if len(key) <= 8:
        return "*" * len(key)
    return key[:4] + "*" * (len(key) - 8) + key[-4:]


@router.get("", response_model=ConfigResponse)
async def get_config() -> ConfigResponse:
    """Get current configuration with API keys masked"""
    config = ConfigManager.get_instance().get_config()

    providers = {}
    for name in PROVIDERS:
        section = dict(config.get(name, {}))
        if "apiKey" in section:
            section["apiKey"] = mask_key(section["apiKey"])
        providers[name] = section

    return ConfigResponse(
        provider=config.get("provider", "ollama"),
        workspaceRoot=config["workspaceRoot"],
        contextSize=config["contextSize"],
        maxTokens=config["maxTokens"],
        chunkSize=config["chunkSize"],
        requestTimeoutMs=config["requestTimeoutMs"],
        requireTerminalCommandConfirmation=config["requireTerminalCommandConfirmation"],
        enableVerboseLogs=config["enableVerboseLogs"],
        **providers,
    )


@router.put("")
async def update_config(request: ConfigUpdateRequest) -> dict[str, Any]:
    """Update configuration; provider sections are merged, other keys replaced"""
    config_manager = ConfigManager.get_instance()
    current_config = config_manager.get_config()

    updates = request.model_dump(exclude_none=True)
    for name in PROVIDERS:
        if name in updates:
            current_config[name] = {**current_config.get(name, {}), **updates.pop(name)}
    current_config.update(updates)

    config_manager.save_config(current_config)

    return {"status": "success", "message": "Configuration updated"}


@router.post("/validate", response_model=ValidateResponse)
async def validate_config() -> ValidateResponse:
    """Validate current configuration by testing LLM connection"""
    config = ConfigManager.get_instance().get_config()
    provider = config.get("provider", "ollama")

    try:
        llm_service = LLMService(config)
        response = await llm_service.generate_response("Say 'OK' if you can hear me.")

        if response:
            return ValidateResponse(
                valid=True,
                message=f"Successfully connected to {provider}",
                provider=provider,
            )
        return ValidateResponse(
            valid=False,
            message="Received empty response from LLM",
            provider=provider,
        )

    except Exception as e:
        return ValidateResponse(
            valid=False,
            message=f"Connection failed: {str(e)}",
            provider=provider,
        )
