"""
Access control for forms and responses.

Forms: visible when published or requested by the creator; only the
creator may change them.
Responses: visible, editable and deletable by their submitter or by the
creator of the form they belong to. Anonymous submissions therefore
belong to the form creator alone.
"""
from typing import Optional

from formdesk.db.enums import ANONYMOUS_SUBMITTER
from formdesk.db.models import Form, Response
from formdesk.exceptions import Forbidden, NotFound, Unauthorized


def is_identified(requester_id: Optional[str]) -> bool:
    return bool(requester_id) and requester_id != ANONYMOUS_SUBMITTER


def can_view_form(form: Form, requester_id: Optional[str]) -> bool:
    return bool(form.published) or (is_identified(requester_id) and form.created_by == requester_id)


def ensure_form_visible(form: Optional[Form], requester_id: Optional[str]) -> Form:
    if form is None:
        raise NotFound("Form not found")
    if not can_view_form(form, requester_id):
        # Don't confirm a draft exists to callers without an identity
        if not is_identified(requester_id):
            raise NotFound("Form not found")
        raise Forbidden("Not authorized to access this form")
    return form


def ensure_form_owner(form: Optional[Form], requester_id: Optional[str]) -> Form:
    if not is_identified(requester_id):
        raise Unauthorized()
    if form is None:
        raise NotFound("Form not found")
    if form.created_by != requester_id:
        raise Forbidden("Not authorized to modify this form")
    return form


def can_access_response(response: Response, form: Form, requester_id: Optional[str]) -> bool:
    if not is_identified(requester_id):
        return False
    return response.submitted_by == requester_id or form.created_by == requester_id


def ensure_response_access(response: Optional[Response], form: Form, requester_id: Optional[str]) -> Response:
    if not is_identified(requester_id):
        raise Unauthorized()
    if response is None or response.form_id != form.id:
        raise NotFound("Response not found")
    if not can_access_response(response, form, requester_id):
        raise Forbidden("Not authorized to access this response")
    return response
