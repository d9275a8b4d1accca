from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "upload-service"
    app_version: str = "dev"
    host: str = "0.0.0.0"
    port: int = 8000
    database_url: str = "sqlite:///./upload_service.db"
    database_auto_create: bool = False
    scratch_root: str = "./TempChunks"
    object_store_endpoint: str = "localhost:9000"
    object_store_access_key: str = ""
    object_store_secret_key: str = ""
    object_store_bucket: str = "uploads"
    object_store_secure: bool = False
    object_store_region: str = "us-east-1"
    object_store_connect_timeout_seconds: int = 5
    object_store_read_timeout_seconds: int = 60
    object_store_max_attempts: int = 1
    public_url_base: str = "http://localhost:9000"
    naming_max_attempts: int = 1000
    janitor_enabled: bool = True
    janitor_interval_seconds: int = 3600
    stale_session_ttl_seconds: int = 86400
    single_upload_allowed_extensions: str = ""
    tracing_enabled: bool = False
    tracing_service_name: str = "upload-service"
    otlp_endpoint: str = "localhost:4317"
    otlp_insecure: bool = True

    def allowed_single_upload_extensions(self) -> set[str]:
        extensions: set[str] = set()
        for raw in self.single_upload_allowed_extensions.split(","):
            value = raw.strip().lower()
            if not value:
                continue
            extensions.add(value if value.startswith(".") else f".{value}")
        return extensions


settings = Settings()
