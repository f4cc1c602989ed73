from pathlib import Path

import pytest
from reportlab.pdfgen import canvas

from text_fit import Box, StyleBounds, monospace_width_oracle


@pytest.fixture()
def measure():
    return monospace_width_oracle(0.6)


@pytest.fixture()
def box() -> Box:
    return Box(width=100, height=20)


@pytest.fixture()
def style() -> StyleBounds:
    return StyleBounds(max_font_size=13, min_font_size=8, step_down=0.5, line_gap_multiplier=1.23)


def build_template(path: Path, pages: int = 2, size: tuple[float, float] = (300.0, 200.0)) -> Path:
    c = canvas.Canvas(str(path), pagesize=size)
    for index in range(pages):
        c.setFont("Helvetica", 12)
        c.drawString(20, 150, f"Template page {index + 1}")
        c.showPage()
    c.save()
    return path


@pytest.fixture()
def template_pdf(tmp_path: Path) -> Path:
    return build_template(tmp_path / "template.pdf")


@pytest.fixture()
def facts_csv(tmp_path: Path) -> Path:
    path = tmp_path / "facts.csv"
    path.write_text(
        "Fact,Source\n"
        '"Octopuses have   three hearts.",wiki\n'
        ",empty\n"
        '"Honey never spoils\nif sealed.",museum\n',
        encoding="utf-8-sig",
    )
    return path
