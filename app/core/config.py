from pydantic_settings import BaseSettings
from dotenv import load_dotenv
from pathlib import Path
import os


load_dotenv()


class Settings(BaseSettings):
    app_name: str = "VectorNode API"
    debug: bool = False
    database_url: str = "sqlite:///./vectornode.db"
    host: str = "127.0.0.1"
    port: int = 5000
    secret_key: str = ""
    access_token_expire_minutes: int = 60
    refresh_token_expire_minutes: int = 60 * 24 * 7
    allowed_hosts: str = "http://localhost:3000"
    static_dir: Path = Path(__file__).parent.parent.parent / "static"
    public_url: str = "http://localhost:5000"
    frontend_url: str = "http://localhost:3000"
    log_file: str = "logs/application.log"

    # Checkpoint scans
    qr_token_ttl_hours: int = 24 * 30
    upload_concurrency: int = 4
    max_photo_bytes: int = 8 * 1024 * 1024

    # Disputes
    dispute_deadline_hours: int = 48


settings = Settings()

if not settings.secret_key:
    raise RuntimeError("Secret key not configured.")


os.makedirs(settings.static_dir, exist_ok=True)
