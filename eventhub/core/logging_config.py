"""
Logging configuration for the EventHub API.

Console plus rotating file output; secrets never reach the log lines.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler


def setup_logging(log_level: str = "INFO", log_dir: str = "logs"):
    """
    Configure application logging.
    
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory receiving the rotating eventhub.log file
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    
    log_path = Path(log_dir)
    log_path.mkdir(exist_ok=True)
    
    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()
    
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    
    file_handler = RotatingFileHandler(
        log_path / "eventhub.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))
    
    logger.addHandler(console_handler)
    logger.addHandler(file_handler)
    
    # Third-party noise
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


SENSITIVE_KEYS = [
    "password", "token", "secret", "key", "signature",
    "stripe_secret_key", "stripe_webhook_secret", "database_url",
]


def sanitize_log_data(data: dict) -> dict:
    """
    Redact secrets from a dict before it is logged.
    
    Nested dicts (webhook metadata, provider payload fragments) are
    sanitized recursively.
    
    Args:
        data: Dictionary to sanitize
        
    Returns:
        Copy of the dictionary with sensitive values replaced
    """
    sanitized = {}
    for key, value in data.items():
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "***REDACTED***"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_log_data(value)
        else:
            sanitized[key] = value
    return sanitized
