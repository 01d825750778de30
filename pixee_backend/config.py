import os
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# В Docker переменные окружения уже установлены, .env нужен только локально
env_file = Path(__file__).parent.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)
else:
    load_dotenv(override=False)

logger = logging.getLogger(__name__)


class Settings:
    """
    Настройки приложения
    """

    # === ОСНОВНЫЕ НАСТРОЙКИ ===
    APP_NAME: str = "Pixee AI Backend"
    APP_DESCRIPTION: str = "Image processing proxy for hosted generative models"
    APP_VERSION: str = "1.0.0"

    # === НАСТРОЙКИ СЕРВЕРА ===
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "5000"))
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"

    # === UPSTREAM API ===
    REPLICATE_API_TOKEN: Optional[str] = os.getenv("REPLICATE_API_TOKEN")
    REPLICATE_BASE_URL: str = os.getenv("REPLICATE_BASE_URL", "https://api.replicate.com")
    PREDICTION_WAIT_SECONDS: int = int(os.getenv("PREDICTION_WAIT_SECONDS", "60"))

    UPLOAD_MAX_RETRIES: int = int(os.getenv("UPLOAD_MAX_RETRIES", "2"))
    UPLOAD_RETRY_DELAY: float = float(os.getenv("UPLOAD_RETRY_DELAY", "2.0"))
    UPLOAD_TIMEOUT: float = float(os.getenv("UPLOAD_TIMEOUT", "120.0"))

    POLL_INITIAL_DELAY: float = float(os.getenv("POLL_INITIAL_DELAY", "1.0"))
    POLL_MAX_DELAY: float = float(os.getenv("POLL_MAX_DELAY", "10.0"))
    POLL_TIMEOUT: float = float(os.getenv("POLL_TIMEOUT", "300.0"))

    # === ХРАНЕНИЕ ФАЙЛОВ ===
    PUBLIC_BASE_URL: Optional[str] = os.getenv("PUBLIC_BASE_URL") or os.getenv("API_BASE_URL")
    UPLOAD_DIR: str = os.getenv("UPLOAD_DIR", "temp/uploads")
    PROCESSED_DIR: str = os.getenv("PROCESSED_DIR", "public/processed")
    PUBLIC_UPLOADS_DIR: str = os.getenv("PUBLIC_UPLOADS_DIR", "public/uploads")
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))

    DOWNLOAD_TIMEOUT: float = float(os.getenv("DOWNLOAD_TIMEOUT", "30.0"))
    VERIFY_TIMEOUT: float = float(os.getenv("VERIFY_TIMEOUT", "5.0"))
    VERIFY_PROCESSED: bool = os.getenv("VERIFY_PROCESSED", "True").lower() == "true"
    MIN_IMAGE_BYTES: int = int(os.getenv("MIN_IMAGE_BYTES", "100"))

    # === ОЧИСТКА ФАЙЛОВ ===
    FILE_RETENTION_HOURS: float = float(os.getenv("FILE_RETENTION_HOURS", "1"))
    CLEANUP_INTERVAL_SECONDS: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))
    DISABLE_CLEANUP: bool = os.getenv("DISABLE_CLEANUP", "False").lower() == "true"

    # === НАСТРОЙКИ CORS ===
    CORS_ORIGINS: List[str] = os.getenv(
        "CORS_ORIGINS", "http://localhost:5000,http://localhost:5001"
    ).split(",")

    # === НАСТРОЙКИ ЛОГИРОВАНИЯ ===
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    def setup_logging(self):
        """
        Настройка логирования приложения
        """
        logging.basicConfig(
            level=getattr(logging, self.LOG_LEVEL.upper()),
            format=self.LOG_FORMAT
        )

        if self.DEBUG:
            logging.getLogger("uvicorn").setLevel(logging.DEBUG)
            logging.getLogger("uvicorn.access").setLevel(logging.DEBUG)

        if not self.REPLICATE_API_TOKEN:
            logger.warning("⚠️ REPLICATE_API_TOKEN is not set")

    @property
    def verification_base_url(self) -> str:
        """Base address used to HEAD-check freshly written files."""
        base = self.PUBLIC_BASE_URL or f"http://127.0.0.1:{self.PORT}"
        return base.rstrip("/")

    def get_cors_config(self) -> dict:
        """
        Получить конфигурацию CORS
        """
        return {
            "allow_origins": [origin.strip() for origin in self.CORS_ORIGINS if origin.strip()],
            "allow_credentials": True,
            "allow_methods": ["*"],
            "allow_headers": ["*"],
        }

    def get_app_config(self) -> dict:
        """
        Получить конфигурацию FastAPI приложения
        """
        return {
            "title": self.APP_NAME,
            "description": self.APP_DESCRIPTION,
            "version": self.APP_VERSION,
            "debug": self.DEBUG
        }


# Создаем глобальный экземпляр настроек
settings = Settings()

# Настраиваем логирование при импорте модуля
settings.setup_logging()
