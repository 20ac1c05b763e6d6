import pytest

import phenocolour
from phenocolour import ConfigError, main, resolve_location

NAME = "MC100_Tammela_20230704_153045_0001"


def test_resolve_location():
    assert resolve_location("MC106") == "Hyytiälä, crown"
    assert resolve_location(None) is None
    with pytest.raises(ConfigError):
        resolve_location("MC999")


def test_location_table_is_read_only():
    with pytest.raises(TypeError):
        phenocolour.LOCATIONS["MC999"] = "Nowhere"


def test_main_writes_default_output_folder(tmp_path, make_frame, capsys):
    make_frame(tmp_path / f"{NAME}.png", color=(4, 5, 6))
    code = main([str(tmp_path), "--roi", "0", "0", "5", "5", "--camera", "MC100", "--font-size", "12"])
    assert code == 0
    assert (tmp_path / "Output" / f"{NAME}_green.png").is_file()
    assert capsys.readouterr().out.splitlines() == ["Tammela, canopy, 04.07.2023, 15:30:45, Rgb([4, 5, 6])"]


def test_main_existing_output_folder_is_fatal(tmp_path, make_frame):
    make_frame(tmp_path / f"{NAME}.png")
    (tmp_path / "Output").mkdir()
    assert main([str(tmp_path), "--roi", "0", "0", "5", "5"]) == 2


@pytest.mark.parametrize("extra", [
    ["--camera", "MC999"],
    ["--font", "/nonexistent/font.ttf"],
    ["--foreground", "not-a-colour"],
])
def test_main_config_errors_are_fatal(tmp_path, make_frame, extra):
    make_frame(tmp_path / f"{NAME}.png")
    assert main([str(tmp_path), "--roi", "0", "0", "5", "5", *extra]) == 2
    assert not (tmp_path / "Output").exists()


def test_main_degenerate_roi_is_fatal(tmp_path, make_frame):
    make_frame(tmp_path / f"{NAME}.png")
    assert main([str(tmp_path), "--roi", "0", "0", "0", "5"]) == 2


def test_main_skip_policy_exit_code(tmp_path, make_frame):
    make_frame(tmp_path / "bad.png")
    make_frame(tmp_path / f"{NAME}.png")
    code = main([str(tmp_path), "--roi", "0", "0", "5", "5", "--on-error", "skip", "--no-summary"])
    assert code == 1
    assert (tmp_path / "Output" / f"{NAME}_green.png").is_file()
