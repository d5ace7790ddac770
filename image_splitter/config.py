from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', env_file_encoding='utf-8', extra='ignore')

    provider: str = 'dummy'
    gemini_api_key: str | None = None
    gemini_model: str = 'gemini-2.5-flash-lite'
    gemini_base_url: str = 'https://generativelanguage.googleapis.com'
    gemini_timeout_ms: int = 60000
    min_dimension_fraction: float = 0.02
    detection_cache_size: int = 64
    max_sessions: int = 64
    enable_history: bool = True
    history_dir: str = 'history'
    max_image_bytes: int = 20 * 1024 * 1024
    host: str = '127.0.0.1'
    port: int = 8001
    log_level: str = 'INFO'
    version: str = '1.0.0'


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
