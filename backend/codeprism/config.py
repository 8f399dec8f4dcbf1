from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = "CodePrism"
    app_env: str = "development"
    debug: bool = False

    # Document store
    document_store: str = "sql"
    database_url: str = "sqlite+aiosqlite:///./codeprism.db"

    # Vault
    vault_storage_dir: str = "./data/vault"
    vault_key_prefix: str = "vault/"
    vault_max_file_size: int = 25 * 1024 * 1024
    public_base_url: str = ""

    # Admin gate
    admin_auth_required: bool = True
    approver_token: str = ""
    session_ttl_minutes: int = 60
    shared_redirect_delay: float = 2.0

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS: comma-separated origins (e.g. "https://thecodeprism.dev")
    cors_allow_origins: str = "http://localhost:3000"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


settings = Settings()
