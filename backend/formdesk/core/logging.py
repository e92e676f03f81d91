"""
Structured Logging Module
Request-scoped logging for the form service. Every record carries the
request id of the HTTP request it belongs to; service operations add the
form/response they act on.
"""
import inspect
import json
import logging
import time
import uuid
from contextvars import ContextVar
from functools import wraps
from typing import Any, Dict, Optional

from formdesk.core.config import Settings, settings

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
request_start_var: ContextVar[Optional[float]] = ContextVar('request_start', default=None)

# Arguments of wrapped service calls copied into their log records
OPERATION_CONTEXT_ARGS = ('form_id', 'response_id', 'requester_id', 'owner_id')


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: str) -> None:
    request_id_var.set(request_id)


def generate_request_id() -> str:
    return str(uuid.uuid4())[:8]


def configure_logging(app_settings: Settings) -> None:
    """Attach a stream handler to the ``formdesk`` logger tree once."""
    root = logging.getLogger('formdesk')
    root.setLevel(logging.DEBUG if app_settings.DEBUG else logging.INFO)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
        root.addHandler(handler)


class StructuredLogger:
    """
    Logger emitting one JSON document per record in production and a single
    readable line otherwise. Keyword arguments become the record's context.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name
        self._is_json = settings.APP_ENV == 'production'

    def _record(self, level: str, message: str, context: Dict[str, Any], error: Optional[Exception]) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%S%z'),
            'level': level,
            'logger': self.name,
            'message': message,
        }
        request_id = get_request_id()
        if request_id:
            record['request_id'] = request_id
        if context:
            record['context'] = context
        if error is not None:
            record['error'] = {'type': type(error).__name__, 'message': str(error)}
        return record

    def _render(self, record: Dict[str, Any]) -> str:
        if self._is_json:
            return json.dumps(record, default=str)

        line = f"[{record.get('request_id', '-')}] {record['message']}"
        context = record.get('context')
        if context:
            line += ' | ' + ' '.join(f'{k}={v}' for k, v in context.items())
        if 'error' in record:
            line += f" | error={record['error']['type']}: {record['error']['message']}"
        return line

    def _emit(
        self,
        level: int,
        message: str,
        context: Dict[str, Any],
        error: Optional[Exception] = None,
        exc_info: bool = False,
    ) -> None:
        if not self.logger.isEnabledFor(level):
            return
        record = self._record(logging.getLevelName(level), message, context, error)
        self.logger.log(level, self._render(record), exc_info=exc_info)

    def debug(self, message: str, **context):
        self._emit(logging.DEBUG, message, context)

    def info(self, message: str, **context):
        self._emit(logging.INFO, message, context)

    def warning(self, message: str, **context):
        self._emit(logging.WARNING, message, context)

    def error(self, message: str, error: Optional[Exception] = None, **context):
        self._emit(logging.ERROR, message, context, error)

    def exception(self, message: str, error: Optional[Exception] = None, **context):
        """Error record with the active traceback attached."""
        self._emit(logging.ERROR, message, context, error, exc_info=True)


def get_logger(name: str = 'formdesk') -> StructuredLogger:
    return StructuredLogger(name)


api_logger = get_logger('formdesk.api')
forms_logger = get_logger('formdesk.forms')
responses_logger = get_logger('formdesk.responses')
storage_logger = get_logger('formdesk.storage')
db_logger = get_logger('formdesk.database')


def _operation_context(signature: inspect.Signature, args: tuple, kwargs: dict) -> Dict[str, Any]:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return {}
    return {
        name: value
        for name, value in bound.arguments.items()
        if name in OPERATION_CONTEXT_ARGS and value is not None
    }


def log_operation(operation: str, logger: Optional[StructuredLogger] = None):
    """
    Log a service coroutine's outcome and duration along with the form and
    response ids it was called with.

        @log_operation("update_response", responses_logger)
        async def update_response(session, form_id, response_id, ...):
            ...
    """
    def decorator(func):
        signature = inspect.signature(func)
        log = logger or api_logger

        @wraps(func)
        async def wrapper(*args, **kwargs):
            context = _operation_context(signature, args, kwargs)
            start = time.perf_counter()
            log.debug(f"{operation} started", **context)
            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                duration = round((time.perf_counter() - start) * 1000, 2)
                log.error(f"{operation} failed", error=e, duration_ms=duration, **context)
                raise
            duration = round((time.perf_counter() - start) * 1000, 2)
            log.info(f"{operation} completed", duration_ms=duration, **context)
            return result

        return wrapper

    return decorator
