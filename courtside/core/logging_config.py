from loguru import logger
import os

LOG_FORMAT = "{time} | {level} | {message}"

# log_type extra -> file
CATEGORY_SINKS = {
    "booking": "bookings.log",
    "payment": "payments.log",
    "webhook": "webhooks.log",
    "security": "security.log",
    "admin": "admin.log",
}

_configured_dir = None


def _category_filter(name):
    return lambda record: record["extra"].get("log_type") == name


def setup_logging(log_dir: str = "logs"):
    global _configured_dir

    if _configured_dir == log_dir:
        return logger

    # Create folder if missing
    if not os.path.exists(log_dir):
        os.makedirs(log_dir)

    # Remove default handler
    logger.remove()

    # General application log
    logger.add(
        f"{log_dir}/app.log",
        rotation="1 week",
        retention="4 weeks",
        level="INFO",
        enqueue=True,
        format=LOG_FORMAT,
    )

    for name, filename in CATEGORY_SINKS.items():
        logger.add(
            f"{log_dir}/{filename}",
            rotation="1 week",
            retention="4 weeks",
            level="INFO",
            enqueue=True,
            filter=_category_filter(name),
            format=LOG_FORMAT,
        )

    # Error logs
    logger.add(
        f"{log_dir}/errors.log",
        rotation="1 week",
        retention="8 weeks",
        level="ERROR",
        enqueue=True,
    )

    _configured_dir = log_dir
    return logger


def get_logger():
    return logger
