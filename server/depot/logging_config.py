import sys
from logging.config import dictConfig

from depot.config import APP_ENV

LOG_LEVEL = "DEBUG" if APP_ENV == "development" else "INFO"


def setup_logging():
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "default": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "default",
                },
            },
            "loggers": {
                # SQL echo stays off unless asked for explicitly.
                "sqlalchemy.engine": {
                    "level": "WARNING",
                    "propagate": True,
                },
            },
            "root": {
                "level": LOG_LEVEL,
                "handlers": ["console"],
            },
        }
    )
