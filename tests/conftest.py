from pathlib import Path

import pytest
from PIL import Image

import phenocolour


@pytest.fixture
def font_style():
    return phenocolour.load_font_style(None, 16)


@pytest.fixture
def config(font_style):
    return phenocolour.ProcessingConfig(
        roi=phenocolour.RegionOfInterest(0, 0, 10, 10),
        font=font_style,
        location="Tammela, canopy",
    )


@pytest.fixture
def make_frame():
    def _make(path: Path, color=(10, 200, 30), size=(240, 120)) -> Path:
        Image.new("RGB", size, color).save(path)
        return path
    return _make
