from __future__ import annotations
import contextvars
import logging
import sys
import uuid
from typing import Optional

from pythonjsonlogger import jsonlogger
from starlette.requests import Request

from ..config import get_settings

# id of the request being served; empty outside a request
request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("request_id", default="")

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "twilio.http_client")


class RequestIdFilter(logging.Filter):
    """Stamps records with the current request id so service logs line up with the access log."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get()
        return True


def setup_logging(level: Optional[str] = None) -> None:
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(levelname)s %(name)s %(message)s %(asctime)s %(request_id)s",
            rename_fields={"levelname": "level"},
        )
    )
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)
    root.setLevel(level or get_settings().LOG_LEVEL)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel("WARNING")


def get_request_id(req: Request, header: str) -> str:
    # keep an id minted upstream (proxy, frontend) so traces join up
    return req.headers.get(header) or uuid.uuid4().hex
