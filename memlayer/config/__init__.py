"""Configuration schema."""

from .settings import (
    ChatCfg,
    LogCfg,
    NodeCfg,
    OllamaCfg,
    PromptCfg,
    RagCfg,
    Settings,
    StoreCfg,
)

__all__ = [
    "ChatCfg",
    "LogCfg",
    "NodeCfg",
    "OllamaCfg",
    "PromptCfg",
    "RagCfg",
    "Settings",
    "StoreCfg",
]
