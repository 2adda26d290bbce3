from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env proje kökünde: lifeline/core/config.py -> lifeline/core -> lifeline -> kök
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

# OpenAI anahtarının geçerli sayılması için (başında boşluk vb. olmaması)
OPENAI_KEY_PREFIX = "sk-"


class Settings(BaseSettings):
    openai_api_key: str = ""
    # Birden fazla anahtar: virgülle ayrılmış. Boşsa OPENAI_API_KEY kullanılır.
    openai_api_keys: str = ""
    openai_model: str = "gpt-4o-mini"
    secret_key: str = "change-me-in-production"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 gün
    database_url: str = "sqlite:///./lifeline.db"
    # CORS: virgülle ayrılmış origin listesi
    cors_origins: str = "*"
    # IP başına dakikada max istek (rate limit)
    rate_limit_per_minute: int = 60
    # Kayıt endpoint'i için ayrı limit (testte yüksek tutulabilir)
    rate_limit_register_per_minute: int = 3
    admin_secret: str = ""             # /admin/* için X-Admin-Secret
    upload_max_mb: int = 10            # data URI görseller için max boyut (MB, decode sonrası)
    interview_max_questions: int = 15  # AI görüşmesinde sorulacak max soru
    environment: str = "development"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("openai_api_key", "openai_api_keys", mode="before")
    @classmethod
    def strip_openai_key(cls, v: str | None) -> str:
        """Boşluk/yanlış kopya kaynaklı hataları azaltır."""
        return (v or "").strip()


settings = Settings()


def get_openai_keys() -> list[str]:
    """
    Geçerli OpenAI anahtarlarını döner (sk- ile başlayan, boşluksuz).
    OPENAI_API_KEYS varsa virgülle ayrılmış liste; yoksa OPENAI_API_KEY tek eleman.
    """
    keys_raw = (settings.openai_api_keys or "").strip()
    if keys_raw:
        keys = [k.strip() for k in keys_raw.split(",") if k.strip() and k.strip().startswith(OPENAI_KEY_PREFIX)]
        if keys:
            return keys
    single = (settings.openai_api_key or "").strip()
    if single and single.startswith(OPENAI_KEY_PREFIX):
        return [single]
    return []


def is_openai_configured() -> bool:
    return len(get_openai_keys()) > 0
