"""
Tests for the HTTP API and the command line.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import INSPECTION_TEXT


@pytest.fixture
def client(pipeline):
    from inspectflow.api.routes import get_pipeline
    from inspectflow.main import app

    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


# ═══════════════════════════════════════════════════════════════════════════
# /api/process
# ═══════════════════════════════════════════════════════════════════════════

class TestProcessEndpoint:
    def test_success(self, client):
        resp = client.post("/api/process", json={"content": INSPECTION_TEXT})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["extracted_data"]["containerNo"] == "ABCD1234567"
        assert body["validation"]["passed"] is True
        assert [s["id"] for s in body["steps"]] == ["ocr", "layout", "extraction", "vector", "validation"]

    def test_missing_content(self, client):
        resp = client.post("/api/process", json={})
        assert resp.status_code == 400

    def test_embedding_failure_is_502(self, client, embedder):
        from inspectflow.processing.exceptions import EmbeddingError

        embedder.embed.side_effect = EmbeddingError("service unavailable")
        resp = client.post("/api/process", json={"content": INSPECTION_TEXT})

        assert resp.status_code == 502
        body = resp.json()
        assert body["success"] is False
        assert body["failed_stage"] == "vector"
        assert body["error"] == "service unavailable"
        assert body["timestamp"]

    def test_internal_failure_is_500(self, client):
        with patch("inspectflow.processing.pipeline.analyse_layout", side_effect=KeyError("x")):
            resp = client.post("/api/process", json={"content": INSPECTION_TEXT})
        assert resp.status_code == 500
        assert resp.json()["failed_stage"] == "layout"

    def test_finished_job_is_409(self, client):
        first = client.post("/api/process", json={"content": INSPECTION_TEXT}).json()
        resp = client.post("/api/process", json={"content": INSPECTION_TEXT, "job_id": first["job_id"]})
        assert resp.status_code == 409

    def test_file_reference(self, client, pipeline_settings):
        (pipeline_settings.upload_dir / "invoice.txt").write_text(INSPECTION_TEXT, encoding="utf-8")
        resp = client.post("/api/process", json={"file_path": "invoice.txt"})
        assert resp.status_code == 200

    def test_file_reference_outside_uploads(self, client):
        resp = client.post("/api/process", json={"file_path": "../secrets.txt"})
        assert resp.status_code == 400


# ═══════════════════════════════════════════════════════════════════════════
# /api/analyze, /api/jobs, /api/health
# ═══════════════════════════════════════════════════════════════════════════

class TestOtherEndpoints:
    def test_analyze_content(self, client, llm):
        resp = client.post("/api/analyze", json={"content": INSPECTION_TEXT})
        assert resp.status_code == 200
        assert resp.json()["extracted"]["supplier"] == "Acme Co"
        assert llm.chat.call_args.args[1] == INSPECTION_TEXT

    def test_analyze_texts_are_joined(self, client, llm):
        resp = client.post("/api/analyze", json={"texts": ["Supplier: Acme Co", "Buyer: Globex"]})
        assert resp.status_code == 200
        assert llm.chat.call_args.args[1] == "Supplier: Acme Co\n\nBuyer: Globex"

    def test_analyze_empty(self, client):
        assert client.post("/api/analyze", json={}).status_code == 400

    def test_job_lifecycle(self, client):
        created = client.post("/api/jobs", json={"document_id": "doc-1"})
        assert created.status_code == 201
        job_id = created.json()["id"]
        assert created.json()["status"] == "pending"

        resp = client.post("/api/process", json={"content": INSPECTION_TEXT, "job_id": job_id})
        assert resp.json()["job_id"] == job_id

        job = client.get(f"/api/jobs/{job_id}").json()
        assert job["status"] == "completed"
        assert job["progress"] == 100

        entities = client.get(f"/api/jobs/{job_id}/entities").json()
        assert [e["entity_value"] for e in entities] == ["Acme Co", "Globex"]

    def test_duplicate_job_is_409(self, client):
        client.post("/api/jobs", json={"job_id": "job-1"})
        assert client.post("/api/jobs", json={"job_id": "job-1"}).status_code == 409

    def test_unknown_job_is_404(self, client):
        assert client.get("/api/jobs/missing").status_code == 404
        assert client.get("/api/jobs/missing/entities").status_code == 404

    def test_health(self, client):
        body = client.get("/api/health").json()
        assert body["status"] == "healthy"
        assert body["services"] == {"job_store": "ok", "llm": "configured", "vector_index": "ok"}
        assert body["version"]

    def test_health_degraded(self, client, index):
        index.ping.return_value = False
        body = client.get("/api/health").json()
        assert body["status"] == "degraded"
        assert body["services"]["vector_index"] == "unavailable"


# ═══════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════

class TestCLI:
    def test_chunk(self, tmp_path, capsys):
        from inspectflow.services.cli import main

        path = tmp_path / "notes.txt"
        path.write_text(
            "The shipment was inspected at the port of loading. "
            "All cartons were sealed and labelled correctly.",
            encoding="utf-8",
        )
        assert main(["chunk", str(path), "--max-size", "60"]) == 0
        out = capsys.readouterr().out
        assert "2 chunks." in out

    def test_validate(self, tmp_path, capsys):
        from inspectflow.services.cli import main

        good = tmp_path / "good.json"
        good.write_text(json.dumps({"supplier": "Acme", "buyer": "Globex", "product": "Bolts"}))
        bad = tmp_path / "bad.json"
        bad.write_text(json.dumps({"supplier": "Acme", "containerNo": "XX1"}))

        assert main(["validate", str(good)]) == 0
        assert main(["validate", str(bad)]) == 1
        assert "Missing required field: buyer" in capsys.readouterr().out

    def test_process(self, tmp_path, capsys, pipeline):
        from inspectflow.services.cli import main

        path = tmp_path / "doc.txt"
        path.write_text(INSPECTION_TEXT, encoding="utf-8")
        with patch("inspectflow.processing.pipeline.build_pipeline", return_value=pipeline):
            assert main(["process", str(path), "--json"]) == 0
        assert json.loads(capsys.readouterr().out)["success"] is True

    def test_missing_file(self, tmp_path):
        from inspectflow.services.cli import main

        assert main(["validate", str(tmp_path / "absent.json")]) == 2
