from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    app_env: str = "dev"
    log_level: str = "INFO"

    storage_root: str = "public"
    public_subdir: str = "uploads"
    staging_subdir: str = "uploads"
    public_base_url: str = ""

    min_file_size_bytes: int = 2 * 1024
    max_file_size_bytes: int = 5 * 1024 * 1024
    sniff_bytes: int = 8 * 1024
    stream_chunk_bytes: int = 64 * 1024

    require_declared_type_match: bool = False

    sanitizer_timeout_seconds: float = 2.0
    sanitizer_max_nodes: int = 50_000
    sanitizer_max_depth: int = 128
