"""
配置加载模块：支持 .env、环境变量、工作目录 config.json（或 CONFIG_FILE 指定）多来源合并。
公开接口：
- Config: 读取配置的设置类
- config: Config 的单例实例
内部方法：
- Config.settings_customise_sources: 自定义配置来源顺序
- Config.parse_cors_origins: 将字符串/JSON 解析为 List[str]
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Annotated, Any, Dict, List, Literal, Tuple

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, PydanticBaseSettingsSource


class Config(BaseSettings):
    # 表单默认值
    default_country: str = "JP"
    default_validity_days: int = 365
    default_key_size: int = 2048
    default_algorithm: Literal["RSA", "ECDSA"] = "RSA"

    # 签发参数
    rsa_public_exponent: int = 65537
    private_key_format: Literal["pkcs8", "traditional"] = "pkcs8"
    include_extensions: bool = True
    issue_timeout_seconds: float = 60.0

    # 下载文件名
    certificate_filename: str = "certificate.crt"
    private_key_filename: str = "private.key"
    public_key_filename: str = "public.key"

    # 服务
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"
    cors_origins: Annotated[List[str], NoDecode] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, value: Any) -> List[str]:
        """支持从环境变量以 JSON 或分隔符（逗号/分号/空白）解析 cors_origins。"""
        if value is None or value == "":
            return []
        if isinstance(value, list):
            return [str(v) for v in value]
        if isinstance(value, str):
            text = value.strip()
            try:
                loaded = json.loads(text)
                if isinstance(loaded, list):
                    return [str(v) for v in loaded]
            except ValueError:
                pass
            return [p for p in re.split(r"[\s,;]+", text) if p]
        return value

    @field_validator("default_country")
    @classmethod
    def normalize_country(cls, value: str) -> str:
        return value.strip().upper()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """自定义配置来源顺序：入参 > 环境变量 > .env > config.json > secrets。"""

        class JsonFileSettingsSource(PydanticBaseSettingsSource):
            """从工作目录的 config.json（或 CONFIG_FILE 指定路径）加载配置的自定义 Source。"""

            def __init__(self, settings_cls):
                super().__init__(settings_cls)
                self._data: Dict[str, Any] | None = None

            def _load(self) -> None:
                if self._data is not None:
                    return
                cfg_path = os.environ.get("CONFIG_FILE")
                path = Path(cfg_path) if cfg_path else Path.cwd() / "config.json"
                if not path.exists():
                    self._data = {}
                    return
                try:
                    with path.open("r", encoding="utf-8") as f:
                        data = json.load(f)
                    self._data = data if isinstance(data, dict) else {}
                except (OSError, ValueError):
                    self._data = {}

            def __call__(self) -> Dict[str, Any]:
                self._load()
                return dict(self._data or {})

            def get_field_value(self, field, field_name):  # type: ignore[override]
                """为满足抽象基类要求，按键名返回字段值。"""
                self._load()
                data = self._data or {}
                if field_name in data:
                    return data[field_name], field_name, True
                return None, field_name, False

        return (
            init_settings,
            env_settings,
            dotenv_settings,
            JsonFileSettingsSource(settings_cls),
            file_secret_settings,
        )


config = Config()
