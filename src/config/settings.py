import re
from pathlib import Path

import structlog
from celery.schedules import crontab
from decouple import config
from dj_database_url import parse as db_url

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Local/test default only; production deployments must set SECRET_KEY.
SECRET_KEY = config("SECRET_KEY", default="dev-insecure-order-lifecycle-key")

DEBUG = config("DEBUG", default=False, cast=bool)

# Application definition
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    # Local Apps (Modules)
    "modules.core",
    "modules.organization",
    "modules.orders",
    "modules.settlement",
]

DATABASES = {
    "default": config(
        "DATABASE_URL", default=f'sqlite:///{BASE_DIR / "db.sqlite3"}', cast=db_url
    )
}

# Cache - Redis (also backs distributed locks and settlement markers)
REDIS_URL = config("REDIS_URL", default="redis://localhost:6379/0")

CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {
            "CLIENT_CLASS": "django_redis.client.DefaultClient",
        },
    }
}

# Internationalization
LANGUAGE_CODE = "ko-kr"
TIME_ZONE = config("TIME_ZONE", default="Asia/Seoul")
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# ---------------------------------------------------------------------------
# Order lifecycle
# ---------------------------------------------------------------------------
ORDER_ASSIGN_LOCK_TTL_MS = config("ORDER_ASSIGN_LOCK_TTL_MS", default=3000, cast=int)

LOCK_RETRY = {
    "MAX_RETRIES": config("LOCK_RETRY_MAX_RETRIES", default=3, cast=int),
    "INITIAL_DELAY_MS": config("LOCK_RETRY_INITIAL_DELAY_MS", default=100, cast=int),
    "MAX_DELAY_MS": config("LOCK_RETRY_MAX_DELAY_MS", default=1000, cast=int),
    "BACKOFF_MULTIPLIER": config(
        "LOCK_RETRY_BACKOFF_MULTIPLIER", default=2, cast=float
    ),
}

# ---------------------------------------------------------------------------
# Settlement schedule (weekly lock Monday morning, unlock Friday evening)
# ---------------------------------------------------------------------------
SETTLEMENT_LOCK_HOUR = config("SETTLEMENT_LOCK_HOUR", default=9, cast=int)
SETTLEMENT_UNLOCK_HOUR = config("SETTLEMENT_UNLOCK_HOUR", default=17, cast=int)

# ---------------------------------------------------------------------------
# Celery (async tasks via Redis)
# ---------------------------------------------------------------------------
CELERY_BROKER_URL = config("CELERY_BROKER_URL", default="redis://localhost:6379/0")
CELERY_RESULT_BACKEND = config(
    "CELERY_RESULT_BACKEND", default="redis://localhost:6379/0"
)
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE

CELERY_BEAT_SCHEDULE = {
    "settlement-weekly-lock": {
        "task": "modules.settlement.tasks.lock_previous_week",
        "schedule": crontab(minute=0, hour=SETTLEMENT_LOCK_HOUR, day_of_week="mon"),
    },
    "settlement-weekly-unlock": {
        "task": "modules.settlement.tasks.unlock_for_adjustments",
        "schedule": crontab(
            minute=0, hour=SETTLEMENT_UNLOCK_HOUR, day_of_week="fri"
        ),
    },
}

# ---------------------------------------------------------------------------
# Structured Logging (structlog + Django LOGGING)
# ---------------------------------------------------------------------------
SENSITIVE_PATTERN = re.compile(
    r"(01[016789]-?\d{3,4}-?\d{4})"  # mobile phone
    r"|(\d{6}-?[1-4]\d{6})"  # resident registration number
    r"|(password|passwd|secret|token|authorization)"
    r"""([=:]\s*["']?)([^\s,}"']+)""",
    re.IGNORECASE,
)


def mask_sensitive_data(_, __, event_dict):
    """Processor that masks phone numbers, RRNs, passwords and tokens in log values."""
    for key, value in list(event_dict.items()):
        if isinstance(value, str):
            event_dict[key] = SENSITIVE_PATTERN.sub("***MASKED***", value)
    return event_dict


# Shared processors used by both structlog and stdlib logging
_shared_processors = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso"),
    mask_sensitive_data,
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
]

structlog.configure(
    processors=[
        *_shared_processors,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processors": [
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.JSONRenderer(),
            ],
            "foreign_pre_chain": _shared_processors,
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "INFO",
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "celery": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}
