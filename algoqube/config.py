import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

DEFAULT_JWT_SECRET = "dev-jwt-secret-change-me"


class Config:
    # Runtime
    APP_ENV = (
        os.getenv("APP_ENV")
        or os.getenv("ENV")
        or os.getenv("ENVIRONMENT")
        or "development"
    ).strip().lower()
    VERSION = os.getenv("APP_VERSION", "1.0.0")

    # Logging
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower() # Options: "json", "text"

    # CORS Settings
    CORS_PRIMARY_DOMAIN = os.getenv("CORS_PRIMARY_DOMAIN", "algoqube.com").strip().lower()
    CORS_CACHE_TTL_SECONDS = float(os.getenv("CORS_CACHE_TTL_SECONDS", "300"))
    FRONTEND_URL = os.getenv("FRONTEND_URL")

    CORS_ALLOWED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    CORS_ALLOWED_HEADERS = ["Origin", "X-Requested-With", "Content-Type", "Accept", "Authorization"]

    @classmethod
    def environment(cls) -> str:
        env_name = (
            os.getenv("APP_ENV")
            or os.getenv("ENV")
            or os.getenv("ENVIRONMENT")
            or cls.APP_ENV
        )
        return env_name.strip().lower()

    @classmethod
    def is_production(cls) -> bool:
        return cls.environment() in {"prod", "production"}

    @classmethod
    def static_origins(cls) -> list[str]:
        """Operational origins that are always trusted, in declaration order."""
        origins = [
            "http://localhost:3000",
            "http://localhost:3001",
            f"https://{cls.CORS_PRIMARY_DOMAIN}",
            f"https://www.{cls.CORS_PRIMARY_DOMAIN}",
            "https://client-algoqubeai.vercel.app",
            "https://rococo-kashata-839276.netlify.app",
        ]
        frontend_url = os.getenv("FRONTEND_URL", cls.FRONTEND_URL or "")
        if frontend_url and frontend_url.strip():
            origins.append(frontend_url.strip())
        # file:// pages send the literal "null" origin
        origins.append("null")
        return origins

    @classmethod
    def get_jwt_secret(cls) -> str:
        return os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)

    @classmethod
    def get_bcrypt_rounds(cls) -> int:
        raw = os.getenv("BCRYPT_ROUNDS", "12")
        try:
            return max(4, min(int(raw), 16))
        except ValueError:
            return 12

    @classmethod
    def get_jwt_ttl_days(cls) -> int:
        raw = os.getenv("JWT_TTL_DAYS", "7")
        try:
            return max(1, min(int(raw), 30))
        except ValueError:
            return 7

    @classmethod
    def should_use_secure_cookies(cls) -> bool:
        raw = os.getenv("AUTH_COOKIE_SECURE", "auto").strip().lower()
        if raw in {"1", "true", "yes", "on"}:
            return True
        if raw in {"0", "false", "no", "off"}:
            return False
        return cls.is_production()

    @classmethod
    def validate_security(cls) -> None:
        if not cls.is_production():
            return
        if cls.get_jwt_secret() == DEFAULT_JWT_SECRET:
            raise RuntimeError(
                "Refusing startup in production with default JWT secret. "
                "Set JWT_SECRET."
            )
