import io
import json

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfReader

import app_server


@pytest.fixture()
def client(tmp_path, monkeypatch) -> TestClient:
    monkeypatch.setattr(app_server, "OUTPUT_DIR", tmp_path / "out")
    return TestClient(app_server.app)


def test_health(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_fit_text(client):
    response = client.post(
        "/api/fit-text",
        json={"text": "hello   world", "box": {"width": 220, "height": 90}},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["font"] == "Helvetica-Bold"
    assert payload["lines"] == ["hello world"]
    assert payload["font_size"] == 13
    assert payload["truncated"] is False


def test_fit_text_truncates(client):
    response = client.post(
        "/api/fit-text",
        json={
            "text": "many words " * 100,
            "box": {"width": 100, "height": 20},
            "style": {"max_font_size": 12, "min_font_size": 9, "step_down": 1},
        },
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["truncated"] is True
    assert payload["font_size"] == 9
    assert payload["lines"][-1].endswith("…")


def test_fit_text_rejects_bad_box(client):
    response = client.post("/api/fit-text", json={"text": "hi", "box": {"width": 0, "height": 10}})
    assert response.status_code == 422
    assert response.json()["error"] == "InvalidGeometry"


def test_fit_text_rejects_bad_style(client):
    response = client.post(
        "/api/fit-text",
        json={"text": "hi", "box": {"width": 10, "height": 10}, "style": {"min_font_size": 20}},
    )
    assert response.status_code == 422
    assert response.json()["error"] == "InvalidStyleBounds"


def test_generate_cards(client, template_pdf, facts_csv, tmp_path):
    response = client.post(
        "/api/generate-cards",
        files={
            "template": ("template.pdf", template_pdf.read_bytes(), "application/pdf"),
            "csv_file": ("facts.csv", facts_csv.read_bytes(), "text/csv"),
        },
        data={"layout_json": json.dumps({"style": {"max_font_size": 12}})},
    )
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.headers["x-fact-count"] == "2"
    assert len(PdfReader(io.BytesIO(response.content)).pages) == 3
    # Uploaded inputs are removed once the cards are written.
    assert all(p.name.startswith("cards_") for p in (tmp_path / "out").iterdir())


def test_generate_cards_without_facts(client, template_pdf, tmp_path):
    response = client.post(
        "/api/generate-cards",
        files={
            "template": ("template.pdf", template_pdf.read_bytes(), "application/pdf"),
            "csv_file": ("facts.csv", b"Fact\n\n", "text/csv"),
        },
    )
    assert response.status_code == 400
    assert "No facts found" in response.json()["detail"]["error"]


def test_extract_fonts(client, template_pdf):
    pytest.importorskip("fitz")
    response = client.post(
        "/api/extract-fonts",
        files={"template": ("template.pdf", template_pdf.read_bytes(), "application/pdf")},
    )
    assert response.status_code == 200
    assert "Helvetica" in response.json()["fonts"]


def test_generate_cards_with_corrupt_template(client, facts_csv, tmp_path):
    response = client.post(
        "/api/generate-cards",
        files={
            "template": ("template.pdf", b"this is not a pdf", "application/pdf"),
            "csv_file": ("facts.csv", facts_csv.read_bytes(), "text/csv"),
        },
    )
    assert response.status_code == 400
    assert response.json()["detail"]["message"] == "Card generation failed."
    assert list((tmp_path / "out").iterdir()) == []


@pytest.mark.parametrize("layout_json", ["[]", '{"text_area": 5}', "{not json"])
def test_generate_cards_with_malformed_layout(client, template_pdf, facts_csv, layout_json):
    response = client.post(
        "/api/generate-cards",
        files={
            "template": ("template.pdf", template_pdf.read_bytes(), "application/pdf"),
            "csv_file": ("facts.csv", facts_csv.read_bytes(), "text/csv"),
        },
        data={"layout_json": layout_json},
    )
    assert response.status_code == 400
