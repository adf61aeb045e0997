from loguru import logger
import re
import sys
from pagesdns.config import config

# (pattern, replacement) pairs applied to every log message
SENSITIVE_PATTERNS = [
    (
        re.compile(
            r"-----BEGIN[^-]+?PRIVATE KEY-----.+?-----END[^-]+?PRIVATE KEY-----",
            re.DOTALL,
        ),
        "[REDACTED PRIVATE KEY]",
    ),
    (re.compile(r"(Bearer\s+)([A-Za-z0-9\-._~+/]+=*)"), r"\1[REDACTED]"),
    (
        re.compile(r"(token[\"']?\s*[=:]\s*[\"']?)([A-Za-z0-9\-._~+/]+=*)([\"']?)", re.I),
        r"\1[REDACTED]\3",
    ),
    (
        re.compile(r"((?:password|secret|key)[\"']?\s*[=:]\s*[\"']?)([^\s\"',]+)", re.I),
        r"\1[REDACTED]",
    ),
]


def mask_sensitive(message: str) -> str:
    if not isinstance(message, str):
        return message
    for pattern, replacement in SENSITIVE_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


def _mask_record(record):
    record["message"] = mask_sensitive(record["message"])


def configure_logging():
    logger.remove()
    logger.configure(patcher=_mask_record)
    logger.add(
        sys.stderr,
        level=config.get_string("log_level").upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
    )
    if config.get_bool("log_to_file"):
        logger.add(
            config.get_string("log_dir") + "/pagesdns_{time}.log",
            rotation="10 MB",
            retention="30 days",
            level="DEBUG",
        )
