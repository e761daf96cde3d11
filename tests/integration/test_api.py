from __future__ import annotations

from datetime import date, timedelta

HEADERS = {"X-User-Id": "user-1", "X-Org-Id": "org-1"}

CSV = b"Equipment Name,Due Date,Location,Notes\nForklift 3,2025-01-01,Dock 2,Forks worn\nCrane,2025-02-01,Yard,\n"


def _create_template(client, payload: dict) -> dict:
    response = client.post("/api/templates", json=payload)
    assert response.status_code == 201
    return response.json()


def _job_payload(template_id: int, **overrides) -> dict:
    payload = {
        "template_id": template_id,
        "assigned_to": "user-2",
        "frequency": "monthly",
        "anchor_date": (date.today() + timedelta(days=10)).isoformat(),
        "reference": "INS-001",
        "creation_values": {"equipment_name": "Forklift 3", "due_date": "2025-01-01"},
    }
    payload.update(overrides)
    return payload


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_requests_without_actor_headers_are_unauthorized(client) -> None:
    response = client.get("/api/templates", headers={"X-User-Id": "", "X-Org-Id": ""})

    assert response.status_code == 401
    assert response.json() == {"code": "UNAUTHORIZED", "detail": "Unauthorized"}


def test_template_crud(client, template_payload) -> None:
    created = _create_template(client, template_payload)

    assert client.get(f"/api/templates/{created['id']}").json()["fields"] == created["fields"]
    patched = client.patch(f"/api/templates/{created['id']}", json={"description": "Updated"}).json()
    assert patched["version"] == 2

    assert client.delete(f"/api/templates/{created['id']}").json()["active"] is False
    missing = client.get(f"/api/templates/{created['id']}")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NOT_FOUND"


def test_invalid_template_field_is_reported(client, template_payload) -> None:
    payload = template_payload
    payload["fields"].append({"field_key": "location", "field_label": "Site"})
    payload["fields"][1]["field_key"] = "location"

    response = client.post("/api/templates", json=payload)

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_FAILED"
    assert response.json()["errors"] == ['Field key "location" is used more than once']


def test_job_lifecycle(client, template_payload) -> None:
    template = _create_template(client, template_payload)

    created = client.post("/api/jobs", json=_job_payload(template["id"]))
    assert created.status_code == 201
    job = created.json()
    assert job["status"] == "OPEN"

    assert [item["id"] for item in client.get("/api/jobs", params={"status": "open"}).json()] == [job["id"]]
    assert client.get("/api/jobs", params={"status": "completed"}).json() == []

    executed = client.post(f"/api/jobs/{job['id']}/execute", json={"action_values": {"inspection_result": "Pass"}})
    assert executed.status_code == 201
    assert executed.json()["status"] == "COMPLETED"

    detail = client.get(f"/api/jobs/{job['id']}").json()
    assert detail["execution_count"] == 1
    assert detail["template"]["name"] == "Equipment Inspection"
    assert detail["creation_fields"][0] == {
        "field_key": "equipment_name",
        "field_label": "Equipment Name",
        "field_type": "text",
        "value": "Forklift 3",
    }

    board = client.get(f"/api/templates/{template['id']}/board").json()
    assert len(board["executions"]) == 1

    assert client.patch(f"/api/jobs/{job['id']}", json={"assigned_to": "user-9"}).json()["assigned_to"] == "user-9"
    assert client.delete(f"/api/jobs/{job['id']}").json() == {"id": job["id"], "deleted": True}
    assert client.get(f"/api/jobs/{job['id']}").status_code == 404


def test_execution_without_required_action_value_is_rejected(client, template_payload) -> None:
    template = _create_template(client, template_payload)
    job = client.post("/api/jobs", json=_job_payload(template["id"])).json()

    response = client.post(f"/api/jobs/{job['id']}/execute", json={"action_values": {}})

    assert response.status_code == 422
    assert response.json()["errors"] == ['Field "Inspection Result" is required']
    assert client.get(f"/api/jobs/{job['id']}").json()["status"] == "OPEN"


def test_unknown_status_filter_is_rejected(client) -> None:
    response = client.get("/api/jobs", params={"status": "late"})

    assert response.status_code == 422
    assert response.json()["detail"] == "Unknown status 'late'"


def test_jobs_are_invisible_to_other_orgs(client, template_payload) -> None:
    template = _create_template(client, template_payload)
    job = client.post("/api/jobs", json=_job_payload(template["id"])).json()
    other = {**HEADERS, "X-Org-Id": "org-2"}

    assert client.get("/api/jobs", headers=other).json() == []
    assert client.get(f"/api/jobs/{job['id']}", headers=other).status_code == 404


def test_bulk_extract_suggests_mapping(client, template_payload) -> None:
    template = _create_template(client, template_payload)

    response = client.post(
        "/api/jobs/bulk/extract",
        data={"template_id": str(template["id"])},
        files={"file": ("plan.csv", CSV, "text/csv")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["extraction"]["columns"] == ["Equipment Name", "Due Date", "Location", "Notes"]
    assert len(body["extraction"]["rows"]) == 2
    assert {item["document_column"]: item["template_field_key"] for item in body["mapping"]} == {
        "Equipment Name": "equipment_name",
        "Due Date": "due_date",
        "Location": "location",
    }
    assert body["report"]["is_valid"] is True
    assert body["report"]["unmapped_columns"] == ["Notes"]


def test_bulk_extract_rejects_unsupported_upload(client, template_payload) -> None:
    template = _create_template(client, template_payload)

    response = client.post(
        "/api/jobs/bulk/extract",
        data={"template_id": str(template["id"])},
        files={"file": ("plan.doc", b"\xd0\xcf\x11\xe0", "application/msword")},
    )

    assert response.status_code == 422
    assert response.json()["code"] == "EXTRACTION_FAILED"


def test_bulk_mapping_endpoints(client, template_payload) -> None:
    template = _create_template(client, template_payload)
    columns = ["Equipment Name", "Location"]

    suggested = client.post(
        "/api/jobs/bulk/suggest-mapping", json={"template_id": template["id"], "columns": columns}
    ).json()
    assert suggested["report"]["is_valid"] is False
    assert suggested["report"]["missing_required_fields"] == ["Due Date"]

    mapping = suggested["mapping"] + [
        {"document_column": "Planned", "template_field_key": "due_date", "template_field_label": "Due Date"}
    ]
    report = client.post(
        "/api/jobs/bulk/validate-mapping",
        json={"template_id": template["id"], "columns": [*columns, "Planned"], "mapping": mapping},
    ).json()
    assert report["is_valid"] is True

    applied = client.post(
        "/api/jobs/bulk/apply-mapping",
        json={
            "template_id": template["id"],
            "mapping": mapping,
            "rows": [
                {"Equipment Name": "Forklift 3", "Location": "Dock 2", "Planned": "2025-01-01"},
                {"Equipment Name": "Crane", "Location": "Yard", "Planned": ""},
            ],
        },
    ).json()
    assert applied["valid_count"] == 1
    assert applied["invalid_count"] == 1
    assert applied["jobs"][1]["errors"] == ['Required field "Due Date" is missing']


def test_bulk_create_validation_failure_is_422(client, template_payload) -> None:
    template = _create_template(client, template_payload)
    payload = {
        "template_id": template["id"],
        "assigned_to": "user-2",
        "frequency": "monthly",
        "anchor_date": "2025-02-01",
        "jobs": [
            {"creation_values": {"equipment_name": "Forklift 3", "due_date": "2025-01-01"}},
            {"creation_values": {"equipment_name": "Crane"}},
        ],
    }

    response = client.post("/api/jobs/bulk", json=payload)

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "BULK_VALIDATION_FAILED"
    assert body["errors"] == [{"index": 1, "errors": ['Field "Due Date" is required']}]
    assert client.get("/api/jobs").json() == []


def test_bulk_create_success(client, template_payload) -> None:
    template = _create_template(client, template_payload)
    payload = {
        "template_id": template["id"],
        "assigned_to": "user-2",
        "frequency": "quarterly",
        "anchor_date": "2025-02-01",
        "jobs": [
            {"creation_values": {"equipment_name": "Forklift 3", "due_date": "2025-01-01"}},
            {"creation_values": {"equipment_name": "Crane", "due_date": "2025-03-01"}, "assigned_to": "user-5"},
        ],
    }

    result = client.post("/api/jobs/bulk", json=payload).json()

    assert result["total_created"] == 2
    assert result["failed"] == []
    assert sorted(item["assigned_to"] for item in client.get("/api/jobs").json()) == ["user-2", "user-5"]


def test_improve_text_uses_ai_service(client, fake_ai) -> None:
    fake_ai.text = "The forklift was inspected and is in good condition."

    response = client.post("/api/ai/improve-text", json={"text": "forklift inspected its ok", "prompt_key": "formal"})

    assert response.status_code == 200
    assert response.json() == {
        "original_text": "forklift inspected its ok",
        "improved_text": "The forklift was inspected and is in good condition.",
        "prompt_used": "formal",
    }


def test_improve_text_failure_is_generic(client, fake_ai) -> None:
    fake_ai.fail = True

    response = client.post("/api/ai/improve-text", json={"text": "forklift inspected its ok"})

    assert response.status_code == 502
    assert response.json() == {"code": "EXTERNAL_SERVICE_FAILED", "detail": "AI service is unavailable"}
