from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from section_video.api.outputs import LocalOutputStorage
from section_video.core.security import sign_webhook
from section_video.server import create_app
from section_video.workflow.pipeline import SectionPipeline

SCRIPT = "Stop scrolling. This changes how you plan your week. Try it for seven days."


@pytest.fixture
def client(pipeline):
    return TestClient(create_app(pipeline=pipeline))


def _post_webhook(client, event: dict, secret: str | None = None):
    body = json.dumps(event)
    secret = secret or client.app.state.pipeline.config.webhook.secret
    headers = {**sign_webhook(secret, "msg_server", body), "content-type": "application/json"}
    return client.post("/api/webhooks/replicate", content=body, headers=headers)


def _create_and_segment(client, duration: float = 22) -> tuple[str, list]:
    created = client.post("/api/sections", json={"content": SCRIPT, "target_duration": duration, "language": "en"})
    assert created.status_code == 201
    section_id = created.json()["section"]["id"]

    segmented = client.post(
        f"/api/sections/{section_id}/segment",
        json={"total_duration": duration, "language": "en", "model_id": "kling-v2.1"},
    )
    assert segmented.status_code == 200
    return section_id, segmented.json()["units"]


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["webhook_secret_configured"] is True


def test_webhook_test_route(client):
    response = client.get("/api/webhooks/replicate/test")

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_full_section_flow(client, provider, concatenator):
    section_id, units = _create_and_segment(client, duration=10)
    assert len(units) == 1

    dispatched = client.post(f"/api/sections/{section_id}/dispatch-next")
    assert dispatched.status_code == 200
    correlation_id = dispatched.json()["correlation_id"]

    status = client.get(f"/api/units/{units[0]['id']}/status").json()["unit"]
    assert status["status"] == "generating"
    assert status["job"]["correlation_id"] == correlation_id

    hook = _post_webhook(
        client,
        {"id": correlation_id, "status": "succeeded", "output": ["https://cdn.test/1.mp4", "https://cdn.test/1.jpg"]},
    )
    assert hook.status_code == 200
    assert hook.json()["status"] == "completed"

    approved = client.post(f"/api/units/{units[0]['id']}/approve")
    assert approved.status_code == 200
    assert approved.json()["unit"]["status"] == "approved"

    compiled = client.post(f"/api/sections/{section_id}/compile", json={"output_format": "mp4", "quality": "high"})
    assert compiled.status_code == 200
    assert compiled.json()["artifact"]["ordered_unit_ids"] == [units[0]["id"]]

    section = client.get(f"/api/sections/{section_id}").json()["section"]
    assert [u["status"] for u in section["units"]] == ["approved"]
    assert len(section["artifacts"]) == 1


def test_dispatch_unit_with_overrides(client, provider):
    _, units = _create_and_segment(client)

    response = client.post(f"/api/units/{units[0]['id']}/dispatch", json={"overrides": {"cfg_scale": 0.9}})

    assert response.status_code == 200
    assert provider.calls[0]["parameters"]["cfg_scale"] == 0.9


def test_error_status_codes(client, provider, failing_error):
    section_id, units = _create_and_segment(client)

    assert client.get("/api/units/missing/status").status_code == 404
    assert client.get("/api/sections/missing").status_code == 404

    conflict = client.post(f"/api/units/{units[0]['id']}/approve")
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "InvalidStateTransition"

    assert client.post(f"/api/units/{units[1]['id']}/dispatch").status_code == 409
    assert client.post(f"/api/sections/{section_id}/compile").status_code == 400

    bad_segment = client.post(
        f"/api/sections/{section_id}/segment",
        json={"total_duration": 22, "language": "en", "model_id": "nope"},
    )
    assert bad_segment.status_code == 400

    provider.error = failing_error
    rejected = client.post(f"/api/units/{units[0]['id']}/dispatch")
    assert rejected.status_code == 502
    assert rejected.json()["error"] == "DispatchRejected"


def test_webhook_with_bad_signature(client, store):
    section_id, units = _create_and_segment(client)
    correlation_id = client.post(f"/api/sections/{section_id}/dispatch-next").json()["correlation_id"]

    response = _post_webhook(client, {"id": correlation_id, "status": "succeeded"}, secret="whsec_b3RoZXI=")

    assert response.status_code == 401
    assert store.get_unit(units[0]["id"]).status.value == "generating"


def test_regenerate_route(client, store):
    _, units = _create_and_segment(client)

    response = client.post(f"/api/units/{units[0]['id']}/regenerate", json={"new_seed": 11})

    assert response.status_code == 200
    assert response.json()["unit"]["seed"] == 11
    assert store.get_unit(units[0]["id"]).seed == 11


def test_segment_rejects_infinite_duration(client):
    created = client.post("/api/sections", json={"content": SCRIPT, "target_duration": 22, "language": "en"})
    section_id = created.json()["section"]["id"]

    response = client.post(
        f"/api/sections/{section_id}/segment",
        content='{"total_duration": Infinity, "language": "en", "model_id": "kling-v2.1"}',
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 422


def test_stored_outputs_are_served(config, provider, concatenator, tmp_path):
    storage = LocalOutputStorage(directory=tmp_path / "media", public_base_url="http://testserver/media")
    (tmp_path / "media" / "unit-1").mkdir(parents=True)
    (tmp_path / "media" / "unit-1" / "result.mp4").write_bytes(b"clip")
    pipeline = SectionPipeline(config, provider=provider, concatenator=concatenator, output_storage=storage)

    response = TestClient(create_app(pipeline=pipeline)).get("/media/unit-1/result.mp4")

    assert response.status_code == 200
    assert response.content == b"clip"
