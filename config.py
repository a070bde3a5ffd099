import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel


class Settings(BaseModel):
    """Configuración del proceso, construida una sola vez al arrancar."""

    db_path: str = "saltern.db"
    pool_size: int = 10
    pool_timeout: Optional[float] = None
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Lee las variables SALTERN_* (y el archivo .env si existe)."""
        load_dotenv(env_file)

        timeout = os.getenv("SALTERN_POOL_TIMEOUT")
        origins = os.getenv("SALTERN_CORS_ORIGINS", "*")

        return cls(
            db_path=os.getenv("SALTERN_DB_PATH", "saltern.db"),
            pool_size=int(os.getenv("SALTERN_POOL_SIZE", "10")),
            pool_timeout=float(timeout) if timeout else None,
            host=os.getenv("SALTERN_HOST", "0.0.0.0"),
            port=int(os.getenv("SALTERN_PORT", "3000")),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            log_level=os.getenv("SALTERN_LOG_LEVEL", "INFO").upper(),
        )
