import json

import pytest
from httpx import AsyncClient
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from formdesk.db.models import Response, ResponseField

pytestmark = pytest.mark.integration

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _stored_files(storage_dir):
    return sorted(p for p in storage_dir.rglob("*") if p.is_file())


@pytest.fixture
async def contact_form(make_form):
    return await make_form(title="Contact", fields=[
        ("Name", "text", {"required": True}),
        ("Age", "number"),
        ("Email", "email"),
        ("Size", "select", {"options": json.dumps(["S", "M", "L"])}),
        ("Toppings", "checkbox", {"options": json.dumps(["ham", "egg", "cheese"])}),
    ])


@pytest.fixture
async def upload_form(make_form):
    return await make_form(title="Uploads", fields=[
        ("Name", "text", {"required": True}),
        ("Photo", "file"),
        ("Contract", "file", {"required": True}),
    ])


def _ids(form):
    return {f.label: f.id for f in form.fields}


@pytest.mark.anyio
async def test_anonymous_submission_to_published_form(client: AsyncClient, contact_form):
    ids = _ids(contact_form)
    res = await client.post(
        f"/api/forms/{contact_form.id}/responses",
        json={ids["Name"]: "Ada", ids["Age"]: 36, ids["Size"]: "M"},
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["submitted_by"] == "anonymous"
    assert body["form_id"] == contact_form.id


@pytest.mark.anyio
async def test_submission_to_draft_form(client: AsyncClient, make_form, other_headers, owner_headers):
    draft = await make_form(published=False, fields=[("Name", "text")])
    url = f"/api/forms/{draft.id}/responses"
    name_id = draft.fields[0].id

    assert (await client.post(url, json={name_id: "x"})).status_code == 404
    assert (await client.post(url, json={name_id: "x"}, headers=other_headers)).status_code == 403
    assert (await client.post(url, json={name_id: "x"}, headers=owner_headers)).status_code == 201


@pytest.mark.anyio
async def test_validation_errors_are_collected_per_field(
    client: AsyncClient,
    contact_form,
    other_headers,
    test_session: AsyncSession,
):
    ids = _ids(contact_form)
    res = await client.post(
        f"/api/forms/{contact_form.id}/responses",
        json={ids["Age"]: "old", ids["Email"]: "not-an-email", ids["Size"]: "XL"},
        headers=other_headers,
    )
    assert res.status_code == 422
    errors = res.json()["errors"]
    assert set(errors) == {ids["Name"], ids["Age"], ids["Email"], ids["Size"]}
    assert "required" in errors[ids["Name"]]
    assert await test_session.scalar(select(func.count(Response.id))) == 0


@pytest.mark.anyio
async def test_values_are_normalized(client: AsyncClient, contact_form, other_headers, owner_headers):
    ids = _ids(contact_form)
    res = await client.post(
        f"/api/forms/{contact_form.id}/responses",
        json={
            ids["Name"]: "  Ada  ",
            ids["Toppings"]: ["ham", "cheese"],
            "not-a-field": "ignored",
        },
        headers=other_headers,
    )
    assert res.status_code == 201, res.text

    detail = await client.get(
        f"/api/forms/{contact_form.id}/responses/{res.json()['id']}",
        headers=owner_headers,
    )
    values = {f["label"]: f["value"] for f in detail.json()["fields"]}
    assert values == {
        "Name": "Ada",
        "Age": "",
        "Email": "",
        "Size": "",
        "Toppings": json.dumps(["ham", "cheese"]),
    }


@pytest.mark.anyio
async def test_multipart_list_values(client: AsyncClient, contact_form, other_headers):
    ids = _ids(contact_form)
    res = await client.post(
        f"/api/forms/{contact_form.id}/responses",
        data={ids["Name"]: "Ada", ids["Toppings"]: ["egg", "ham"]},
        files={"unused": ("note.txt", b"", "text/plain")},
        headers=other_headers,
    )
    assert res.status_code == 201, res.text


@pytest.mark.anyio
async def test_resubmission_creates_new_response(
    client: AsyncClient,
    contact_form,
    other_headers,
    test_session: AsyncSession,
):
    ids = _ids(contact_form)
    url = f"/api/forms/{contact_form.id}/responses"
    first = await client.post(url, json={ids["Name"]: "Ada"}, headers=other_headers)
    second = await client.post(url, json={ids["Name"]: "Ada"}, headers=other_headers)
    assert first.json()["id"] != second.json()["id"]
    assert await test_session.scalar(select(func.count(Response.id))) == 2


@pytest.mark.anyio
async def test_file_upload_is_stored(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
):
    ids = _ids(upload_form)
    res = await client.post(
        f"/api/forms/{upload_form.id}/responses",
        data={ids["Name"]: "Ada"},
        files={
            ids["Contract"]: ("contract.pdf", b"%PDF-1.4 test", "application/pdf"),
            ids["Photo"]: ("me.png", PNG_BYTES, "image/png"),
        },
        headers=other_headers,
    )
    assert res.status_code == 201, res.text

    detail = await client.get(
        f"/api/forms/{upload_form.id}/responses/{res.json()['id']}",
        headers=other_headers,
    )
    fields = {f["label"]: f for f in detail.json()["fields"]}
    contract = fields["Contract"]
    assert contract["value"].startswith(f"{upload_form.id}/")
    assert contract["value"].endswith(".pdf")
    assert contract["file_name"] == "contract.pdf"
    assert contract["file_size"] == len(b"%PDF-1.4 test")
    assert contract["mime_type"] == "application/pdf"
    assert contract["file_url"] == f"/api/files/{contract['value']}"
    assert (storage_dir / contract["value"]).read_bytes() == b"%PDF-1.4 test"
    assert len(_stored_files(storage_dir)) == 2


@pytest.mark.anyio
async def test_empty_upload_counts_as_missing(client: AsyncClient, upload_form, other_headers, storage_dir):
    ids = _ids(upload_form)
    res = await client.post(
        f"/api/forms/{upload_form.id}/responses",
        data={ids["Name"]: "Ada"},
        files={ids["Contract"]: ("contract.pdf", b"", "application/pdf")},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert ids["Contract"] in res.json()["errors"]
    assert _stored_files(storage_dir) == []


@pytest.mark.anyio
async def test_oversized_upload_rejected_before_reading(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
):
    ids = _ids(upload_form)
    big = b"%PDF" + b"0" * (1024 * 1024)
    res = await client.post(
        f"/api/forms/{upload_form.id}/responses",
        # sent under a text field: only the size limit can reject it
        files={ids["Name"]: ("big.pdf", big, "application/pdf")},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert res.json()["errors"] == {
        ids["Name"]: "File size exceeds the maximum allowed size of 1MB",
    }
    assert _stored_files(storage_dir) == []


@pytest.mark.anyio
@pytest.mark.parametrize("filename,content,content_type", [
    ("big.pdf", b"%PDF" + b"0" * (1024 * 1024), "application/pdf"),
    ("notes.txt", b"hello", "text/plain"),
    ("setup.exe", b"MZ....", "application/octet-stream"),
    ("invoice.pdf.exe", b"%PDF", "application/pdf"),
])
async def test_rejected_uploads_write_nothing(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
    filename,
    content,
    content_type,
):
    ids = _ids(upload_form)
    res = await client.post(
        f"/api/forms/{upload_form.id}/responses",
        data={ids["Name"]: "Ada"},
        files={ids["Contract"]: (filename, content, content_type)},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert ids["Contract"] in res.json()["errors"]
    assert _stored_files(storage_dir) == []


@pytest.mark.anyio
async def test_valid_file_not_written_when_other_field_fails(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
):
    ids = _ids(upload_form)
    res = await client.post(
        f"/api/forms/{upload_form.id}/responses",
        data={ids["Name"]: ""},
        files={ids["Contract"]: ("contract.pdf", b"%PDF-1.4", "application/pdf")},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert list(res.json()["errors"]) == [ids["Name"]]
    assert _stored_files(storage_dir) == []


@pytest.mark.anyio
async def test_scanning_rejects_mismatched_signature(
    client: AsyncClient,
    upload_form,
    other_headers,
    test_settings,
):
    test_settings.ENABLE_FILE_SCANNING = True
    ids = _ids(upload_form)
    res = await client.post(
        f"/api/forms/{upload_form.id}/responses",
        data={ids["Name"]: "Ada"},
        files={ids["Contract"]: ("contract.pdf", b"not really a pdf", "application/pdf")},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert "signature" in res.json()["errors"][ids["Contract"]]


@pytest.mark.anyio
async def test_linked_submission_resolves_display(
    client: AsyncClient,
    make_form,
    make_response,
    other_headers,
):
    customers = await make_form(title="Customers", fields=[("Name", "text"), ("City", "text")])
    orders = await make_form(title="Orders", fields=[
        ("Customer", "linkedSubmission", {"linked_form_id": customers.id}),
    ])
    name_id, city_id = _ids(customers)["Name"], _ids(customers)["City"]
    customer = await make_response(customers, values={name_id: "Ada", city_id: "London"})

    res = await client.post(
        f"/api/forms/{orders.id}/responses",
        json={orders.fields[0].id: customer.id},
        headers=other_headers,
    )
    assert res.status_code == 201, res.text

    detail = await client.get(
        f"/api/forms/{orders.id}/responses/{res.json()['id']}",
        headers=other_headers,
    )
    linked = detail.json()["fields"][0]["linked"]
    assert linked["submission_id"] == customer.id
    assert linked["form_id"] == customers.id
    assert linked["display_value"] == "Ada, London"
    assert linked["submission_data"] == {"Name": "Ada", "City": "London"}


@pytest.mark.anyio
async def test_linked_submission_from_wrong_form_rejected(
    client: AsyncClient,
    make_form,
    make_response,
    other_headers,
):
    customers = await make_form(title="Customers", fields=[("Name", "text")])
    suppliers = await make_form(title="Suppliers", fields=[("Name", "text")])
    orders = await make_form(title="Orders", fields=[
        ("Customer", "linkedSubmission", {"linked_form_id": customers.id}),
    ])
    supplier = await make_response(suppliers, values={suppliers.fields[0].id: "Acme"})

    res = await client.post(
        f"/api/forms/{orders.id}/responses",
        json={orders.fields[0].id: supplier.id},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert orders.fields[0].id in res.json()["errors"]

    missing = await client.post(
        f"/api/forms/{orders.id}/responses",
        json={orders.fields[0].id: "no-such-response"},
        headers=other_headers,
    )
    assert missing.status_code == 422


@pytest.mark.anyio
async def test_response_detail_access(
    client: AsyncClient,
    contact_form,
    make_response,
    owner_headers,
    other_headers,
    auth_headers,
):
    response = await make_response(contact_form, submitted_by="user-other")
    url = f"/api/forms/{contact_form.id}/responses/{response.id}"

    assert (await client.get(url, headers=other_headers)).status_code == 200
    assert (await client.get(url, headers=owner_headers)).status_code == 200
    assert (await client.get(url, headers=auth_headers("user-third"))).status_code == 403
    assert (await client.get(url)).status_code == 401

    wrong_form = f"/api/forms/some-other-form/responses/{response.id}"
    assert (await client.get(wrong_form, headers=owner_headers)).status_code == 404


@pytest.mark.anyio
async def test_anonymous_response_belongs_to_form_owner(
    client: AsyncClient,
    contact_form,
    make_response,
    owner_headers,
    auth_headers,
):
    response = await make_response(contact_form, submitted_by="anonymous")
    url = f"/api/forms/{contact_form.id}/responses/{response.id}"

    assert (await client.get(url, headers=owner_headers)).status_code == 200
    assert (await client.get(url, headers=auth_headers("anonymous"))).status_code == 401


@pytest.mark.anyio
async def test_list_responses_filters_by_access(
    client: AsyncClient,
    contact_form,
    make_response,
    owner_headers,
    other_headers,
    auth_headers,
):
    mine = await make_response(contact_form, submitted_by="user-other")
    await make_response(contact_form, submitted_by="user-third")

    owner_view = await client.get(f"/api/forms/{contact_form.id}/responses", headers=owner_headers)
    assert len(owner_view.json()) == 2

    other_view = await client.get(f"/api/forms/{contact_form.id}/responses", headers=other_headers)
    assert [r["id"] for r in other_view.json()] == [mine.id]


@pytest.mark.anyio
async def test_list_user_responses(client: AsyncClient, contact_form, make_response, other_headers):
    await make_response(contact_form, submitted_by="user-other", values={contact_form.fields[0].id: "Ada"})
    await make_response(contact_form, submitted_by="user-third")

    res = await client.get("/api/responses/user", headers=other_headers)
    assert res.status_code == 200
    body = res.json()
    assert len(body) == 1
    assert body[0]["form_title"] == "Contact"
    assert body[0]["values"] == {contact_form.fields[0].id: "Ada"}

    assert (await client.get("/api/responses/user")).status_code == 401


@pytest.mark.anyio
async def test_update_response_is_partial(
    client: AsyncClient,
    contact_form,
    make_response,
    other_headers,
):
    ids = _ids(contact_form)
    response = await make_response(
        contact_form,
        submitted_by="user-other",
        values={ids["Name"]: "Ada", ids["Age"]: "36"},
    )

    res = await client.put(
        f"/api/forms/{contact_form.id}/responses/{response.id}",
        json={ids["Age"]: "37", ids["Email"]: "ada@example.com"},
        headers=other_headers,
    )
    assert res.status_code == 200, res.text
    values = {f["label"]: f["value"] for f in res.json()["fields"]}
    assert values["Name"] == "Ada"
    assert values["Age"] == "37"
    assert values["Email"] == "ada@example.com"


@pytest.mark.anyio
async def test_update_response_validates(client: AsyncClient, contact_form, make_response, other_headers):
    ids = _ids(contact_form)
    response = await make_response(contact_form, submitted_by="user-other", values={ids["Name"]: "Ada"})

    res = await client.put(
        f"/api/forms/{contact_form.id}/responses/{response.id}",
        json={ids["Name"]: "", ids["Age"]: "abc"},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert set(res.json()["errors"]) == {ids["Name"], ids["Age"]}


@pytest.mark.anyio
async def test_update_response_forbidden_for_others(
    client: AsyncClient,
    contact_form,
    make_response,
    auth_headers,
):
    response = await make_response(contact_form, submitted_by="user-other")
    res = await client.put(
        f"/api/forms/{contact_form.id}/responses/{response.id}",
        json={contact_form.fields[0].id: "Mallory"},
        headers=auth_headers("user-third"),
    )
    assert res.status_code == 403


async def _submit_with_files(client, form, headers):
    ids = _ids(form)
    res = await client.post(
        f"/api/forms/{form.id}/responses",
        data={ids["Name"]: "Ada"},
        files={
            ids["Contract"]: ("contract.pdf", b"%PDF-1.4 v1", "application/pdf"),
            ids["Photo"]: ("me.png", PNG_BYTES, "image/png"),
        },
        headers=headers,
    )
    assert res.status_code == 201, res.text
    detail = await client.get(f"/api/forms/{form.id}/responses/{res.json()['id']}", headers=headers)
    return res.json()["id"], {f["label"]: f["value"] for f in detail.json()["fields"]}


@pytest.mark.anyio
async def test_update_replaces_file_and_removes_old_one(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
):
    ids = _ids(upload_form)
    response_id, before = await _submit_with_files(client, upload_form, other_headers)

    res = await client.put(
        f"/api/forms/{upload_form.id}/responses/{response_id}",
        files={ids["Contract"]: ("v2.pdf", b"%PDF-1.4 v2", "application/pdf")},
        headers=other_headers,
    )
    assert res.status_code == 200, res.text
    after = {f["label"]: f for f in res.json()["fields"]}

    assert after["Contract"]["value"] != before["Contract"]
    assert after["Contract"]["file_name"] == "v2.pdf"
    assert not (storage_dir / before["Contract"]).exists()
    assert (storage_dir / after["Contract"]["value"]).read_bytes() == b"%PDF-1.4 v2"
    # Untouched file is kept
    assert after["Photo"]["value"] == before["Photo"]
    assert (storage_dir / before["Photo"]).exists()


@pytest.mark.anyio
async def test_delete_marker_clears_optional_file(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
):
    ids = _ids(upload_form)
    response_id, before = await _submit_with_files(client, upload_form, other_headers)

    res = await client.put(
        f"/api/forms/{upload_form.id}/responses/{response_id}",
        data={f"{ids['Photo']}_delete": "true"},
        headers=other_headers,
    )
    assert res.status_code == 200, res.text
    after = {f["label"]: f for f in res.json()["fields"]}
    assert after["Photo"]["value"] == ""
    assert after["Photo"]["file_url"] is None
    assert not (storage_dir / before["Photo"]).exists()


@pytest.mark.anyio
async def test_delete_marker_on_required_file_needs_replacement(
    client: AsyncClient,
    upload_form,
    other_headers,
    storage_dir,
):
    ids = _ids(upload_form)
    response_id, before = await _submit_with_files(client, upload_form, other_headers)

    res = await client.put(
        f"/api/forms/{upload_form.id}/responses/{response_id}",
        data={f"{ids['Contract']}_delete": "true"},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert ids["Contract"] in res.json()["errors"]
    assert (storage_dir / before["Contract"]).exists()


@pytest.mark.anyio
async def test_update_needs_upload_for_required_file_without_one(
    client: AsyncClient,
    upload_form,
    make_response,
    other_headers,
):
    ids = _ids(upload_form)
    response = await make_response(upload_form, values={ids["Name"]: "Ada", ids["Contract"]: ""})
    url = f"/api/forms/{upload_form.id}/responses/{response.id}"

    res = await client.put(
        url,
        files={ids["Contract"]: ("contract.pdf", b"", "application/pdf")},
        headers=other_headers,
    )
    assert res.status_code == 422
    assert res.json()["errors"] == {ids["Contract"]: "Contract is required"}

    # Leaving the field out keeps the partial-update behaviour
    res = await client.put(url, data={ids["Name"]: "Grace"}, headers=other_headers)
    assert res.status_code == 200, res.text


@pytest.mark.anyio
async def test_bulk_delete_responses(
    client: AsyncClient,
    upload_form,
    owner_headers,
    other_headers,
    storage_dir,
    test_session: AsyncSession,
):
    first, _ = await _submit_with_files(client, upload_form, other_headers)
    second, _ = await _submit_with_files(client, upload_form, other_headers)
    assert len(_stored_files(storage_dir)) == 4

    res = await client.request(
        "DELETE",
        f"/api/forms/{upload_form.id}/responses",
        json={"response_ids": [first, second, "unknown"]},
        headers=owner_headers,
    )
    assert res.status_code == 200, res.text
    assert res.json() == {"deleted": 2}
    assert _stored_files(storage_dir) == []
    assert await test_session.scalar(select(func.count(ResponseField.id))) == 0


@pytest.mark.anyio
async def test_bulk_delete_is_all_or_nothing(
    client: AsyncClient,
    contact_form,
    make_response,
    other_headers,
    test_session: AsyncSession,
):
    own = await make_response(contact_form, submitted_by="user-other")
    foreign = await make_response(contact_form, submitted_by="user-third")

    res = await client.request(
        "DELETE",
        f"/api/forms/{contact_form.id}/responses",
        json={"response_ids": [own.id, foreign.id]},
        headers=other_headers,
    )
    assert res.status_code == 403
    assert await test_session.scalar(select(func.count(Response.id))) == 2


@pytest.mark.anyio
async def test_search_responses(
    client: AsyncClient,
    contact_form,
    make_response,
    owner_headers,
    other_headers,
):
    name_id = contact_form.fields[0].id
    for i in range(12):
        await make_response(contact_form, submitted_by="user-third", values={name_id: f"Customer {i}"})
    match = await make_response(contact_form, submitted_by="user-other", values={name_id: "Ada Lovelace"})

    found = await client.get(
        f"/api/forms/{contact_form.id}/responses/search",
        params={"query": "lovelace"},
        headers=owner_headers,
    )
    assert [r["id"] for r in found.json()] == [match.id]

    capped = await client.get(
        f"/api/forms/{contact_form.id}/responses/search",
        params={"query": "customer"},
        headers=owner_headers,
    )
    assert len(capped.json()) == 10

    # Non-owners only find their own responses
    restricted = await client.get(
        f"/api/forms/{contact_form.id}/responses/search",
        params={"query": "customer"},
        headers=other_headers,
    )
    assert restricted.json() == []

    empty = await client.get(
        f"/api/forms/{contact_form.id}/responses/search",
        params={"query": "  "},
        headers=owner_headers,
    )
    assert empty.json() == []


@pytest.mark.anyio
async def test_search_treats_wildcards_literally(
    client: AsyncClient,
    contact_form,
    make_response,
    owner_headers,
):
    name_id = contact_form.fields[0].id
    await make_response(contact_form, values={name_id: "plain"})
    res = await client.get(
        f"/api/forms/{contact_form.id}/responses/search",
        params={"query": "%"},
        headers=owner_headers,
    )
    assert res.json() == []
