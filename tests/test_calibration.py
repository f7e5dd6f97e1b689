import numpy as np
import pytest

from densefuse.calibration import (
    Intrinsics,
    default_intrinsics,
    load_calibration,
    parse_calibration_line,
)


def test_default_intrinsics_values():
    intrinsics = default_intrinsics()
    assert intrinsics.fx == 528.01442863461716
    assert intrinsics.fy == 528.01442863461716
    assert intrinsics.cx == 320
    assert intrinsics.cy == 267
    assert (intrinsics.width, intrinsics.height) == (640, 480)


def test_matrix_layout():
    matrix = default_intrinsics().matrix()
    assert matrix.shape == (3, 3)
    assert matrix[0, 0] == 528.01442863461716
    assert matrix[0, 2] == 320
    assert matrix[1, 2] == 267
    assert matrix[2, 2] == 1
    assert matrix[1, 0] == 0 and matrix[2, 0] == 0 and matrix[0, 1] == 0


def test_parse_four_values_keeps_default_size():
    intrinsics = parse_calibration_line("525 526 319.5 239.5")
    assert intrinsics == Intrinsics(525.0, 526.0, 319.5, 239.5)
    assert (intrinsics.width, intrinsics.height) == (640, 480)


def test_parse_six_values_sets_size():
    intrinsics = parse_calibration_line("525 525 319.5 239.5 320 240\n")
    assert (intrinsics.width, intrinsics.height) == (320, 240)


@pytest.mark.parametrize("line", ["", "1 2 3", "1 2 3 4 5", "1 2 x 4", "abc"])
def test_parse_rejects_wrong_counts(line):
    with pytest.raises(ValueError):
        parse_calibration_line(line)


@pytest.mark.parametrize("path", [None, ""])
def test_load_without_path_gives_defaults(path):
    assert load_calibration(path) == default_intrinsics()


def test_load_text_file(tmp_path):
    path = tmp_path / "calib.txt"
    path.write_text("525 526 319.5 239.5\nignored line\n")
    assert load_calibration(path) == Intrinsics(525.0, 526.0, 319.5, 239.5)


def test_load_empty_text_file_fails(tmp_path):
    path = tmp_path / "calib.txt"
    path.write_text("")
    with pytest.raises(ValueError):
        load_calibration(path)


def test_load_missing_file_fails(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_calibration(tmp_path / "absent.txt")


YML = """%YAML:1.0
depth_intrinsics: !!opencv-matrix
   rows: 3
   cols: 3
   dt: d
   data: [ 528.01442863461716, 0., 320., 0., 528.01442863461716,
       267., 0., 0., 1. ]
"""

XML = """<?xml version="1.0"?>
<opencv_storage>
<depth_intrinsics type_id="opencv-matrix">
  <rows>3</rows>
  <cols>3</cols>
  <dt>d</dt>
  <data>
    528.01442863461716 0. 320. 0. 528.01442863461716 267. 0. 0. 1.</data></depth_intrinsics>
</opencv_storage>
"""


@pytest.mark.parametrize("name,content", [("calib.yml", YML), ("CALIB.YML", YML), ("calib.xml", XML)])
def test_load_matrix_files(tmp_path, name, content):
    path = tmp_path / name
    path.write_text(content)
    intrinsics = load_calibration(path)
    np.testing.assert_allclose(intrinsics.matrix(), default_intrinsics().matrix())


def test_yml_without_matrix_fails(tmp_path):
    path = tmp_path / "calib.yml"
    path.write_text("%YAML:1.0\nother: 1\n")
    with pytest.raises(ValueError):
        load_calibration(path)


def test_xml_with_wrong_shape_fails(tmp_path):
    path = tmp_path / "calib.xml"
    path.write_text(XML.replace("<rows>3</rows>", "<rows>2</rows>"))
    with pytest.raises(ValueError):
        load_calibration(path)