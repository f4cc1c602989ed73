import argparse
import csv
import io
import json
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError
from reportlab.lib.colors import Color
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

from text_fit import (
    Box,
    FitResult,
    StyleBounds,
    fit_text,
    reportlab_width_oracle,
)


ROOT_DIR = Path(__file__).resolve().parent
DEFAULT_OUTPUT_DIR = ROOT_DIR / "output"
DEFAULT_FONT = "Helvetica-Bold"
CUSTOM_FONT_NAME = "CustomFont"

_BASE14_FONTS = {
    "Courier",
    "Courier-Bold",
    "Courier-Oblique",
    "Courier-BoldOblique",
    "Helvetica",
    "Helvetica-Bold",
    "Helvetica-Oblique",
    "Helvetica-BoldOblique",
    "Times-Roman",
    "Times-Bold",
    "Times-Italic",
    "Times-BoldItalic",
    "Symbol",
    "ZapfDingbats",
}


@dataclass(frozen=True)
class TextArea:
    x: float = 40.5
    y: float = 37.0
    width: float = 220.0
    height: float = 90.0

    def __post_init__(self) -> None:
        # Raises InvalidGeometry for a degenerate area.
        Box(width=self.width, height=self.height)

    @property
    def box(self) -> Box:
        return Box(width=self.width, height=self.height)


@dataclass(frozen=True)
class GenerationReport:
    output_path: Path
    fact_count: int
    page_count: int
    truncated_count: int


def _normalize_font_name(name: str) -> str:
    return "".join(ch for ch in name.lower() if ch.isalnum())


def _font_is_available(font_name: str) -> bool:
    if font_name in _BASE14_FONTS:
        return True
    try:
        pdfmetrics.getFont(font_name)
        return True
    except Exception:
        return False


def resolve_font_name(font_name: str, fallback_font: str = DEFAULT_FONT) -> str:
    if _font_is_available(font_name):
        return font_name

    # Case/spacing-insensitive match against registered fonts.
    normalized = _normalize_font_name(font_name)
    for candidate in list(pdfmetrics.getRegisteredFontNames()) + sorted(_BASE14_FONTS):
        if _normalize_font_name(candidate) == normalized and _font_is_available(candidate):
            return candidate

    if _font_is_available(fallback_font):
        print(f"[WARN] Font '{font_name}' is unavailable. Falling back to '{fallback_font}'.")
        return fallback_font

    print(f"[WARN] Font '{font_name}' is unavailable. Falling back to '{DEFAULT_FONT}'.")
    return DEFAULT_FONT


def register_fonts_from_directory(fonts_dir: Path) -> dict[str, str]:
    """Register every .ttf/.otf in *fonts_dir* under its file stem.

    Returns a dict mapping font names to file paths.
    """
    font_map: dict[str, str] = {}
    if not fonts_dir.exists():
        return font_map

    font_files = sorted(fonts_dir.glob("*.ttf")) + sorted(fonts_dir.glob("*.otf"))
    for font_file in font_files:
        try:
            pdfmetrics.registerFont(TTFont(font_file.stem, str(font_file)))
            font_map[font_file.stem] = str(font_file)
            print(f"[OK] Registered font: {font_file.stem}")
        except Exception as e:
            print(f"[FAIL] Failed to register {font_file.name}: {e}")

    return font_map


def extract_fonts_from_pdf(template_path: Path, page_index: int | None = None) -> list[str]:
    """Extract unique font names from one page (or all pages) of a PDF."""
    try:
        import fitz
    except ImportError as exc:
        raise RuntimeError("PyMuPDF is required for font extraction. Install pymupdf.") from exc

    fonts = set()
    with fitz.open(template_path) as doc:
        if page_index is not None and (page_index < 0 or page_index >= len(doc)):
            raise IndexError(f"Page {page_index} out of range. PDF has {len(doc)} page(s).")

        page_numbers = range(len(doc)) if page_index is None else [page_index]
        for page_num in page_numbers:
            data = doc[page_num].get_text("dict")
            for block in data.get("blocks", []):
                if block.get("type") != 0:
                    continue
                for line in block.get("lines", []):
                    for span in line.get("spans", []):
                        font_name = span.get("font")
                        if font_name:
                            fonts.add(font_name)

    return sorted(fonts)


def normalize_text(value: str) -> str:
    return " ".join(str(value).split())


def load_layout(path: Path | None) -> tuple[TextArea, StyleBounds]:
    """Read text area and style overrides from a layout JSON file.

    Shape: ``{"text_area": {"x", "y", "width", "height"},
    "style": {"max_font_size", "min_font_size", "step_down", "line_gap_multiplier"}}``.
    Missing keys keep their defaults.
    """
    if path is None:
        return TextArea(), StyleBounds()
    with path.open("r", encoding="utf-8") as f:
        cfg = json.load(f)
    return layout_from_dict(cfg)


def _layout_section(cfg: dict, key: str) -> dict:
    section = cfg.get(key) or {}
    if not isinstance(section, dict):
        raise ValueError(f"Layout '{key}' must be an object, got {type(section).__name__}.")
    return section


def _layout_number(section: dict, key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Layout value '{key}' must be a number, got {value!r}.")
    return float(value)


def layout_from_dict(cfg: dict) -> tuple[TextArea, StyleBounds]:
    if not isinstance(cfg, dict):
        raise ValueError(f"Layout must be a JSON object, got {type(cfg).__name__}.")
    area_cfg = _layout_section(cfg, "text_area")
    style_cfg = _layout_section(cfg, "style")
    defaults_area = TextArea()
    defaults_style = StyleBounds()
    area = TextArea(
        x=_layout_number(area_cfg, "x", defaults_area.x),
        y=_layout_number(area_cfg, "y", defaults_area.y),
        width=_layout_number(area_cfg, "width", defaults_area.width),
        height=_layout_number(area_cfg, "height", defaults_area.height),
    )
    style = StyleBounds(
        max_font_size=_layout_number(style_cfg, "max_font_size", defaults_style.max_font_size),
        min_font_size=_layout_number(style_cfg, "min_font_size", defaults_style.min_font_size),
        step_down=_layout_number(style_cfg, "step_down", defaults_style.step_down),
        line_gap_multiplier=_layout_number(
            style_cfg, "line_gap_multiplier", defaults_style.line_gap_multiplier
        ),
    )
    return area, style


def load_facts(path: Path, column: str = "Fact") -> list[str]:
    with path.open("r", newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))

    facts = [normalize_text(row.get(column) or "") for row in rows]
    facts = [fact for fact in facts if fact]
    if not facts:
        raise ValueError("No facts found in CSV file.")
    return facts


def timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime("%Y%m%d-%H%M%S")


def default_output_path(output_dir: Path = DEFAULT_OUTPUT_DIR, now: datetime | None = None) -> Path:
    return output_dir / f"cards-generated-{timestamp(now)}.pdf"


def draw_text_area_outline(c: canvas.Canvas, area: TextArea) -> None:
    c.saveState()
    c.setStrokeColor(Color(1, 0, 0, alpha=0.8))
    c.setLineWidth(0.7)
    c.rect(area.x, area.y, area.width, area.height, stroke=1, fill=0)
    c.restoreState()


def draw_card_overlay(
    page_w: float,
    page_h: float,
    fact: str,
    font_name: str,
    area: TextArea,
    style: StyleBounds,
    debug: bool = False,
) -> tuple[bytes, FitResult]:
    packet = io.BytesIO()
    c = canvas.Canvas(packet, pagesize=(page_w, page_h))

    # Blank out whatever the template prints in the text area.
    c.setFillColor(Color(1, 1, 1))
    c.rect(area.x, area.y, area.width, area.height, stroke=0, fill=1)

    fit = fit_text(fact, reportlab_width_oracle(font_name), area.box, style)

    # Lines are stacked upward from the bottom of the area.
    first_y = area.y + (len(fit.lines) - 1) * fit.line_height
    c.setFillColor(Color(0, 0, 0))
    c.setFont(font_name, fit.font_size)
    for index, line in enumerate(fit.lines):
        c.drawString(area.x, first_y - index * fit.line_height, line)

    if debug:
        draw_text_area_outline(c, area)

    c.showPage()
    c.save()
    packet.seek(0)
    return packet.read(), fit


def generate_cards(
    template_path: Path,
    facts: list[str],
    output_path: Path,
    font_name: str = DEFAULT_FONT,
    area: TextArea | None = None,
    style: StyleBounds | None = None,
    debug: bool = False,
) -> GenerationReport:
    """Write one front card per fact followed by the template's back page."""
    area = area or TextArea()
    style = style or StyleBounds()
    if not facts:
        raise ValueError("No facts to render.")

    template_bytes = template_path.read_bytes()
    template = PdfReader(io.BytesIO(template_bytes))
    page_count = len(template.pages)
    if page_count < 2:
        raise ValueError("Template PDF must contain at least one front page and one back page.")

    front_index = 0
    back_index = page_count - 1
    front = template.pages[front_index]
    page_w = float(front.mediabox.width)
    page_h = float(front.mediabox.height)

    writer = PdfWriter()
    truncated_count = 0
    for fact in facts:
        overlay_bytes, fit = draw_card_overlay(
            page_w=page_w,
            page_h=page_h,
            fact=fact,
            font_name=font_name,
            area=area,
            style=style,
            debug=debug,
        )
        if fit.truncated:
            truncated_count += 1
            print(f"[WARN] Fact truncated at {fit.font_size}pt: {fact[:40]}...")

        # A fresh reader per card keeps merged content from leaking between copies.
        page = PdfReader(io.BytesIO(template_bytes)).pages[front_index]
        page.merge_page(PdfReader(io.BytesIO(overlay_bytes)).pages[0])
        writer.add_page(page)

    writer.add_page(PdfReader(io.BytesIO(template_bytes)).pages[back_index])

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("wb") as f:
        writer.write(f)

    return GenerationReport(
        output_path=output_path,
        fact_count=len(facts),
        page_count=len(facts) + 1,
        truncated_count=truncated_count,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render facts from a CSV onto copies of a card template PDF."
    )
    parser.add_argument("--template", help="Path to the card template PDF (front first, back last).")
    parser.add_argument("--csv", dest="csv_path", help="Path to the CSV file with facts.")
    parser.add_argument("--column", default="Fact", help="CSV column holding the fact text.")
    parser.add_argument("--output", help="Output PDF path. Defaults to a timestamped file.")
    parser.add_argument(
        "--output-dir",
        default=str(DEFAULT_OUTPUT_DIR),
        help="Directory for the timestamped output file when --output is omitted.",
    )
    parser.add_argument("--layout", help="Path to a layout JSON file (text_area and style).")
    parser.add_argument("--font", default=DEFAULT_FONT, help="Font used to measure and draw facts.")
    parser.add_argument(
        "--font-path",
        help=f"Optional TTF font path to register as '{CUSTOM_FONT_NAME}'.",
    )
    parser.add_argument("--fonts-dir", help="Directory of .ttf/.otf fonts to register.")
    parser.add_argument("--debug", action="store_true", help="Outline the text area on every card.")
    parser.add_argument(
        "--list-fonts",
        action="store_true",
        help="List the fonts used on the template's front page and exit.",
    )
    parser.add_argument("--preview", help="Print how TEXT would be fitted into the text area and exit.")
    return parser.parse_args(argv)


def print_fit(fit: FitResult) -> None:
    state = "truncated" if fit.truncated else "fits"
    print(f"Font size: {fit.font_size}  Line height: {fit.line_height:.2f}  ({state})")
    for idx, line in enumerate(fit.lines, start=1):
        print(f"{idx:02d} | {line}")


def run(args: argparse.Namespace) -> None:
    if args.list_fonts:
        if not args.template:
            raise ValueError("Provide --template when using --list-fonts.")
        for font in extract_fonts_from_pdf(Path(args.template), page_index=0):
            print(font)
        return

    fonts_dirs = [ROOT_DIR / "fonts"]
    if args.fonts_dir:
        fonts_dirs.append(Path(args.fonts_dir))
    registered_fonts: dict[str, str] = {}
    for fonts_dir in fonts_dirs:
        registered_fonts.update(register_fonts_from_directory(fonts_dir))
    if registered_fonts:
        print(f"Registered {len(registered_fonts)} custom font(s)")

    font_name = args.font
    if args.font_path:
        pdfmetrics.registerFont(TTFont(CUSTOM_FONT_NAME, args.font_path))
        if args.font == DEFAULT_FONT:
            font_name = CUSTOM_FONT_NAME
    font_name = resolve_font_name(font_name)

    area, style = load_layout(Path(args.layout) if args.layout else None)

    if args.preview is not None:
        print_fit(fit_text(args.preview, reportlab_width_oracle(font_name), area.box, style))
        return

    if not args.template:
        raise ValueError("Provide --template.")
    if not args.csv_path:
        raise ValueError("Provide --csv.")

    facts = load_facts(Path(args.csv_path), column=args.column)
    output_path = Path(args.output) if args.output else default_output_path(Path(args.output_dir))

    report = generate_cards(
        template_path=Path(args.template),
        facts=facts,
        output_path=output_path,
        font_name=font_name,
        area=area,
        style=style,
        debug=args.debug,
    )

    print(f"Created {report.output_path}")
    print(f"Facts: {report.fact_count}")
    print(f"Final page count (facts + back): {report.page_count}")
    if report.truncated_count:
        print(f"[WARN] {report.truncated_count} fact(s) were truncated to fit.")


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        run(args)
    except (OSError, ValueError, IndexError, RuntimeError, PyPdfError, TTFError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
