import json
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from pypdf.errors import PyPdfError

from card_generator import (
    DEFAULT_FONT,
    extract_fonts_from_pdf,
    generate_cards,
    layout_from_dict,
    load_facts,
    resolve_font_name,
)
from text_fit import Box, StyleBounds, TextFitError, fit_text, reportlab_width_oracle

ROOT_DIR = Path(__file__).resolve().parent
OUTPUT_DIR = Path(os.environ.get("CARDS_OUTPUT_DIR", str(ROOT_DIR / "out")))

app = FastAPI(title="Fact Card API")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Request validation failed.",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(TextFitError)
async def text_fit_exception_handler(request: Request, exc: TextFitError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "message": "Text fitting failed.",
            "error": type(exc).__name__,
            "detail": str(exc),
        },
    )


class BoxModel(BaseModel):
    width: float
    height: float


class StyleModel(BaseModel):
    max_font_size: float = 13.0
    min_font_size: float = 8.0
    step_down: float = 0.5
    line_gap_multiplier: float = 1.23


class FitRequest(BaseModel):
    text: str
    box: BoxModel
    style: StyleModel = StyleModel()
    font: str = DEFAULT_FONT


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/fit-text")
def fit_text_endpoint(request: FitRequest) -> dict[str, Any]:
    font_name = resolve_font_name(request.font)
    box = Box(width=request.box.width, height=request.box.height)
    style = StyleBounds(**request.style.model_dump())
    fit = fit_text(request.text, reportlab_width_oracle(font_name), box, style)
    return {"font": font_name, **fit.as_dict()}


def write_upload_to_temp(upload: UploadFile, suffix: str) -> Path:
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix, dir=OUTPUT_DIR) as tmp:
        temp_path = Path(tmp.name)
    contents = upload.file.read()
    temp_path.write_bytes(contents)
    return temp_path


@app.post("/api/generate-cards")
def generate_cards_upload(
    template: UploadFile = File(...),
    csv_file: UploadFile = File(...),
    layout_json: str | None = Form(None),
    column: str = Form("Fact"),
    font: str = Form(DEFAULT_FONT),
    debug: bool = Form(False),
) -> FileResponse:
    temp_files: list[Path] = []
    try:
        template_path = write_upload_to_temp(template, suffix=Path(template.filename or "template.pdf").suffix)
        temp_files.append(template_path)
        csv_path = write_upload_to_temp(csv_file, suffix=Path(csv_file.filename or "facts.csv").suffix)
        temp_files.append(csv_path)

        layout_cfg = json.loads(layout_json) if layout_json else {}
        area, style = layout_from_dict(layout_cfg)
        facts = load_facts(csv_path, column=column)

        output_path = OUTPUT_DIR / f"cards_{uuid.uuid4().hex}.pdf"
        report = generate_cards(
            template_path=template_path,
            facts=facts,
            output_path=output_path,
            font_name=resolve_font_name(font),
            area=area,
            style=style,
            debug=debug,
        )
    except (ValueError, IndexError, PyPdfError) as exc:
        raise HTTPException(
            status_code=400,
            detail={
                "message": "Card generation failed.",
                "error": str(exc),
            },
        ) from exc
    finally:
        for temp_file in temp_files:
            temp_file.unlink(missing_ok=True)

    return FileResponse(
        report.output_path,
        media_type="application/pdf",
        filename="cards.pdf",
        headers={
            "X-Fact-Count": str(report.fact_count),
            "X-Truncated-Count": str(report.truncated_count),
        },
    )


@app.post("/api/extract-fonts")
def extract_fonts(template: UploadFile = File(...)) -> dict[str, list[str]]:
    """Extract unique font names from a PDF template."""
    temp_path = write_upload_to_temp(template, suffix=Path(template.filename or "template.pdf").suffix)

    try:
        fonts = extract_fonts_from_pdf(temp_path)
        return {"fonts": fonts}
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to extract fonts: {str(e)}"
        )
    finally:
        temp_path.unlink(missing_ok=True)
