from pathlib import Path

import pytest

from phenocolour import FormatError, MalformedNameError, output_path_for_input, parse_date_caption


def test_parse_date_caption():
    assert parse_date_caption("CAM_A_20230704_153045_extra") == "04.07.2023, 15:30:45"


def test_remainder_keeps_extra_underscores():
    assert parse_date_caption("MC100_Tammela_20190531_120000_a_b_c") == "31.05.2019, 12:00:00"


def test_time_beyond_six_characters_is_ignored():
    assert parse_date_caption("MC100_x_20190531_1200001234_y") == "31.05.2019, 12:00:00"


def test_no_calendar_validation():
    assert parse_date_caption("a_b_20231340_256199_c") == "40.13.2023, 25:61:99"


def test_no_underscores_is_format_error():
    with pytest.raises(FormatError) as excinfo:
        parse_date_caption("onlyonepart")
    assert excinfo.value.name == "onlyonepart"
    assert "onlyonepart" in str(excinfo.value)


@pytest.mark.parametrize("stem", [
    "a_b_20230704_153045",      # four segments
    "a_b_2023074_153045_c",     # short date
    "a_b_202307041_153045_c",   # long date
    "a_b_20230704_15304_c",     # short time
])
def test_malformed_names(stem):
    with pytest.raises(MalformedNameError):
        parse_date_caption(stem)


def test_output_path_for_input():
    assert output_path_for_input("/out", "photo.jpg") == Path("/out/photo_green.jpg")


def test_output_path_keeps_extension_case_and_dots():
    assert output_path_for_input("/out", "/in/a.b.PNG") == Path("/out/a.b_green.PNG")


def test_output_path_requires_extension():
    with pytest.raises(FormatError):
        output_path_for_input("/out", "noext")
