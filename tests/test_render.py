import dataclasses

from PIL import Image

from phenocolour import Color, caption_texts, render_canvas, render_composite


def test_side_by_side_canvas(config):
    frame = Image.new("RGB", (30, 20), (0, 0, 0))
    frame.putpixel((3, 4), (9, 8, 7))
    canvas = render_canvas(frame, Color(10, 200, 30), config)
    assert canvas.size == (60, 20)
    assert canvas.crop((0, 0, 30, 20)).getcolors() == [(600, (10, 200, 30))]
    assert canvas.crop((30, 0, 60, 20)).tobytes() == frame.tobytes()


def test_flood_canvas(config):
    frame = Image.new("RGB", (30, 20), (0, 0, 0))
    canvas = render_canvas(frame, Color(10, 200, 30), dataclasses.replace(config, layout="flood"))
    assert canvas.size == (30, 20)
    assert canvas.getcolors() == [(600, (10, 200, 30))]


def test_caption_texts(config):
    texts = caption_texts("04.07.2023, 15:30:45", Color(1, 2, 3), config)
    assert texts == [
        "Tammela, canopy, 04.07.2023, 15:30:45",
        "Average colour of forest activity",
        "Rgb([1, 2, 3])",
    ]


def test_caption_texts_without_location(config):
    texts = caption_texts("04.07.2023, 15:30:45", Color(1, 2, 3), dataclasses.replace(config, location=None))
    assert texts[0] == "04.07.2023, 15:30:45"


def test_composite_draws_caption_boxes(config):
    frame = Image.new("RGB", (400, 100), (0, 0, 0))
    composite = render_composite(frame, Color(10, 200, 30), ["a", "", "b"], config)
    colors = {color for _, color in composite.getcolors(composite.width * composite.height)}
    assert config.font.background in colors
    # the empty second line gets no box
    row = composite.crop((0, config.font.line_height, 400, 2 * config.font.line_height))
    row_colors = {color for _, color in row.getcolors(row.width * row.height)}
    assert config.font.background not in row_colors
