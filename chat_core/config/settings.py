"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CHAT_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
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


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- Dify 服务 ----
    dify_api_key: Optional[str] = Field(default=None, description="Dify 应用 API 密钥，未设置时使用模拟回复")
    dify_base_url: str = Field(default="https://api.dify.ai/v1", description="Dify API 基础URL")
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    default_user: str = Field(default="anonymous", description="未登录时传给远端的 user 标识")

    # ---- 存储与日志 ----
    storage_root: str = Field(default=".storage", description="会话存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    # ---- 对话行为 ----
    mock_stream_delay: float = Field(default=0.05, ge=0.0, description="模拟流式输出的逐词间隔（秒）")
    title_max_length: int = Field(default=30, ge=4, le=200, description="自动生成标题的最大长度")
    error_reply: str = Field(
        default="抱歉，AI服务暂时不可用，请稍后重试。",
        description="调用失败时写入助手消息的文本",
    )
    empty_reply: str = Field(
        default="抱歉，我没有收到有效的回复。",
        description="阻塞式调用返回空 answer 时的兜底文本",
    )
    stream_error_reply: str = Field(
        default="（回复中断，请稍后重试。）",
        description="流式回复已显示部分内容后失败时，追加在末尾的提示",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("dify_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("dify_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

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


settings = Settings()
