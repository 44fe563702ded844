import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_tuple(value: str | None, default: tuple[int, ...]) -> tuple[int, ...]:
    if value is None or not value.strip():
        return default
    return tuple(int(item) for item in value.split(",") if item.strip())

APP_ENV = os.getenv("APP_ENV", "development")
APP_DEBUG = _get_bool(os.getenv("APP_DEBUG"), default=False)
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if APP_DEBUG else "INFO")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

DEFAULT_SLOT_DURATION_MINUTES = int(os.getenv("DEFAULT_SLOT_DURATION_MINUTES", "60"))
DEFAULT_BOOKING_DURATION_MINUTES = int(os.getenv("DEFAULT_BOOKING_DURATION_MINUTES", "60"))

# "generate future" horizon selector, in months
FUTURE_HORIZON_OPTIONS = _get_int_tuple(os.getenv("FUTURE_HORIZON_OPTIONS"), (1, 3, 6, 12))

# skip: keep slots that already exist; replace: overwrite them from the rule
SLOT_REGENERATION_POLICY = os.getenv("SLOT_REGENERATION_POLICY", "skip").strip().lower()
SLOT_REGENERATION_POLICIES = ("skip", "replace")

MONTH_CELL_VISIBLE_EVENTS = int(os.getenv("MONTH_CELL_VISIBLE_EVENTS", "2"))
WEEK_CELL_VISIBLE_EVENTS = int(os.getenv("WEEK_CELL_VISIBLE_EVENTS", "2"))
WEEK_HOUR_CELL_VISIBLE_EVENTS = int(os.getenv("WEEK_HOUR_CELL_VISIBLE_EVENTS", "1"))

def validate_runtime_config() -> None:
    if SLOT_REGENERATION_POLICY not in SLOT_REGENERATION_POLICIES:
        raise RuntimeError(
            f"SLOT_REGENERATION_POLICY must be one of {', '.join(SLOT_REGENERATION_POLICIES)}."
        )
    if not FUTURE_HORIZON_OPTIONS or any(months < 1 for months in FUTURE_HORIZON_OPTIONS):
        raise RuntimeError("FUTURE_HORIZON_OPTIONS must list positive month counts.")
    if DEFAULT_SLOT_DURATION_MINUTES <= 0:
        raise RuntimeError("DEFAULT_SLOT_DURATION_MINUTES must be positive.")
