"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置。

注意：StreamingChatClient 不读取这里的全局 settings，而是在构造时
显式接收一个 AssistantSettings 实例，并通过 update_settings 整体替换。
模块级的 settings 仅供日志初始化与 api.service 的默认实例使用。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("NOTECHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class QuickAction(BaseModel):
    """一个快捷操作：按钮文字 + 拼接在选中文本前的提示词。"""

    label: str
    prompt: str


DEFAULT_QUICK_ACTIONS: List[QuickAction] = [
    QuickAction(label="Summarize", prompt="Summarize the following text concisely:"),
    QuickAction(label="Explain", prompt="Explain the following in simple terms:"),
    QuickAction(label="Expand", prompt="Expand on the following with more details:"),
    QuickAction(label="Improve", prompt="Improve the writing quality of the following:"),
]


class AssistantSettings(BaseSettings):
    """插件配置（使用 Pydantic）。"""

    # ---- Provider 相关配置 ----
    api_endpoint: str = Field(
        default="http://localhost:11434",
        description="API 基础 URL；本地 Ollama 或任意 OpenAI 兼容服务",
    )
    api_key: str = Field(default="", description="API 密钥，本地部署通常为空")
    model: str = Field(default="", description="默认模型，为空时由调用方显式指定")
    provider: Optional[str] = Field(
        default=None,
        description="预置 Provider 名称（ollama/openai/openrouter/anthropic），api_endpoint 为空时使用",
    )
    extra_headers: Dict[str, str] = Field(default_factory=dict, description="附加的 HTTP 请求头")

    # ---- 采样参数 ----
    temperature: float = Field(default=0.7, ge=0.0, le=1.0, description="生成温度")
    max_tokens: int = Field(default=50000, ge=1, description="最大生成 token 数")
    streaming_enabled: bool = Field(default=True, description="是否使用流式输出")

    # ---- 传输与上下文 ----
    http_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        description="HTTP 超时时间（秒），None 表示不设超时",
    )
    max_context_messages: int = Field(default=20, ge=1, le=100, description="最大上下文消息数")
    attachment_char_limit: int = Field(default=8000, ge=1, description="单个附件拼入提示词的最大字符数")
    quick_actions: List[QuickAction] = Field(
        default_factory=lambda: [a.model_copy() for a in DEFAULT_QUICK_ACTIONS],
        description="快捷操作列表",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="notechat_core 日志级别；DEBUG 时记录被跳过的流式数据行",
    )
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_prefix="NOTECHAT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("api_endpoint", "api_key", "model")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return (v or "").strip()

    @field_validator("log_level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.strip().upper() if isinstance(v, str) else v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = AssistantSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = AssistantSettings
