import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./clinic.db")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))

DEFAULT_APPOINTMENT_DURATION_MINUTES = int(os.getenv("DEFAULT_APPOINTMENT_DURATION_MINUTES", "30"))
LATE_WINDOW_START_MINUTES = int(os.getenv("LATE_WINDOW_START_MINUTES", "5"))
LATE_WINDOW_END_MINUTES = int(os.getenv("LATE_WINDOW_END_MINUTES", "60"))

MIN_SLOT_MINUTES = int(os.getenv("MIN_SLOT_MINUTES", "15"))
MAX_SLOT_MINUTES = int(os.getenv("MAX_SLOT_MINUTES", "240"))

# In-person bookings without a clinic fall back to any active clinic, then any
# clinic at all, when the provider has no clinic of their own.
ALLOW_ANY_CLINIC_FALLBACK = _get_bool(os.getenv("ALLOW_ANY_CLINIC_FALLBACK"), default=True)
DEFAULT_SPECIALTY = os.getenv("DEFAULT_SPECIALTY", "General Medicine")

TELEMEDICINE_EARLY_START_MINUTES = int(os.getenv("TELEMEDICINE_EARLY_START_MINUTES", "15"))
TELEMEDICINE_MEETING_BASE_URL = os.getenv("TELEMEDICINE_MEETING_BASE_URL", "https://meet.jit.si")
TELEMEDICINE_ROOM_PREFIX = os.getenv("TELEMEDICINE_ROOM_PREFIX", "Clinic-Telemedicine")


def is_production() -> bool:
    return APP_ENV.lower() == "production"


def validate_runtime_config() -> None:
    if is_production() and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if LATE_WINDOW_START_MINUTES > LATE_WINDOW_END_MINUTES:
        raise RuntimeError("LATE_WINDOW_START_MINUTES must not exceed LATE_WINDOW_END_MINUTES.")
