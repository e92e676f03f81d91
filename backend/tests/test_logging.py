import logging

import pytest

from formdesk.core.logging import get_logger, log_operation, request_id_var
from formdesk.exceptions import NotFound

logger = get_logger('formdesk.tests')


@log_operation("touch_response", logger)
async def touch_response(session, form_id, response_id, requester_id=None, missing=False):
    if missing:
        raise NotFound("Response not found")
    return response_id


@pytest.mark.anyio
async def test_operation_records_ids(caplog):
    caplog.set_level(logging.DEBUG, logger='formdesk')

    assert await touch_response(None, "form-1", response_id="resp-1", requester_id="user-a") == "resp-1"

    completed = [r.getMessage() for r in caplog.records if "touch_response completed" in r.getMessage()]
    assert len(completed) == 1
    assert "form_id=form-1" in completed[0]
    assert "response_id=resp-1" in completed[0]
    assert "requester_id=user-a" in completed[0]
    assert "session" not in completed[0]


@pytest.mark.anyio
async def test_failed_operation_logged_and_reraised(caplog):
    caplog.set_level(logging.DEBUG, logger='formdesk')

    with pytest.raises(NotFound):
        await touch_response(None, "form-1", "resp-9", missing=True)

    failed = [r for r in caplog.records if "touch_response failed" in r.getMessage()]
    assert len(failed) == 1
    assert failed[0].levelno == logging.ERROR
    assert "error=NotFound" in failed[0].getMessage()
    assert "Response not found" in failed[0].getMessage()
    assert "response_id=resp-9" in failed[0].getMessage()


def test_request_id_prefixes_records(caplog):
    caplog.set_level(logging.INFO, logger='formdesk')
    token = request_id_var.set("abc123")
    try:
        logger.info("Form created", form_id="form-1")
    finally:
        request_id_var.reset(token)

    assert caplog.records[-1].getMessage() == "[abc123] Form created | form_id=form-1"
