"""Structured logging for the proxy, with legacy credentials scrubbed."""

import logging.config
from typing import Any, Dict

import structlog

from .middleware import current_correlation_id

SENSITIVE_KEYS = frozenset(
    {
        "auth",
        "authorization",
        "jwt",
        "password",
        "password_verify",
        "token",
        "secret",
        "api_key",
    }
)


def configure_logging(service_name: str, log_level: str = "INFO") -> None:
    """Configure structlog on top of the stdlib logging tree."""

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": structlog.stdlib.ProcessorFormatter,
                    "processor": structlog.processors.JSONRenderer(),
                    "foreign_pre_chain": [
                        structlog.stdlib.add_log_level,
                        structlog.processors.TimeStamper(fmt="iso"),
                    ],
                },
            },
            "handlers": {
                "default": {
                    "level": log_level,
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                },
            },
            "loggers": {
                "": {
                    "handlers": ["default"],
                    "level": log_level,
                    "propagate": True,
                },
            },
        }
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.CallsiteParameterAdder(
                [structlog.processors.CallsiteParameter.MODULE]
            ),
            add_service_name(service_name),
            add_correlation_id,
            scrub_sensitive_data,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def add_service_name(service_name: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def add_correlation_id(logger, method_name, event_dict):
    """Add correlation ID to all log entries."""
    event_dict["correlation_id"] = current_correlation_id()
    return event_dict


def scrub_sensitive_data(logger, method_name, event_dict):
    """Replace credentials with a marker before anything is rendered."""

    def scrub(value: Any) -> Any:
        if isinstance(value, dict):
            return scrub_dict(value)
        if isinstance(value, list):
            return [scrub(item) for item in value]
        return value

    def scrub_dict(data: Dict[str, Any]) -> Dict[str, Any]:
        return {
            key: "[SCRUBBED]" if str(key).lower() in SENSITIVE_KEYS else scrub(value)
            for key, value in data.items()
        }

    return scrub_dict(event_dict)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
