"""Depth camera intrinsics and calibration file loading."""

from __future__ import annotations

import os
import re
import xml.etree.ElementTree as ElementTree
from dataclasses import dataclass

import numpy as np

DEFAULT_WIDTH = 640
DEFAULT_HEIGHT = 480
DEFAULT_FOCAL = 528.01442863461716
DEFAULT_CX = 320.0
DEFAULT_CY = 267.0

_MATRIX_KEY = "depth_intrinsics"
_FORMAT_MESSAGE = (
    "calibration file should contain a single line with [fx fy cx cy] or [fx fy cx cy w h]"
)


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics of a depth camera and its image size."""

    fx: float
    fy: float
    cx: float
    cy: float
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT

    def matrix(self):
        """The 3x3 camera matrix."""
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ]
        )


def default_intrinsics():
    """Intrinsics used when no calibration file is given."""
    return Intrinsics(DEFAULT_FOCAL, DEFAULT_FOCAL, DEFAULT_CX, DEFAULT_CY)


def _leading_numbers(line, limit):
    numbers = []
    for token in line.split():
        if len(numbers) == limit:
            break
        try:
            numbers.append(float(token))
        except ValueError:
            break
    return numbers


def parse_calibration_line(line):
    """Parse ``fx fy cx cy`` or ``fx fy cx cy w h`` into intrinsics."""
    values = _leading_numbers(line, 6)
    if len(values) == 4:
        fx, fy, cx, cy = values
        return Intrinsics(fx, fy, cx, cy)
    if len(values) == 6:
        fx, fy, cx, cy, width, height = values
        return Intrinsics(fx, fy, cx, cy, int(width), int(height))
    raise ValueError(_FORMAT_MESSAGE)


def _from_matrix(values, rows, cols):
    if rows != 3 or cols != 3 or len(values) != 9:
        raise ValueError(f"{_MATRIX_KEY} must be a 3x3 matrix")
    matrix = np.asarray(values, dtype=np.float64).reshape(3, 3)
    return Intrinsics(matrix[0, 0], matrix[1, 1], matrix[0, 2], matrix[1, 2])


def _read_yaml_matrix(text):
    block = re.search(_MATRIX_KEY + r"\s*:(.*)", text, re.DOTALL)
    if block is None:
        raise ValueError(f"no {_MATRIX_KEY} entry in calibration file")
    body = block.group(1)
    rows = re.search(r"rows\s*:\s*(\d+)", body)
    cols = re.search(r"cols\s*:\s*(\d+)", body)
    data = re.search(r"data\s*:\s*\[([^\]]*)\]", body)
    if rows is None or cols is None or data is None:
        raise ValueError(f"malformed {_MATRIX_KEY} entry in calibration file")
    values = [float(item) for item in data.group(1).replace(",", " ").split()]
    return _from_matrix(values, int(rows.group(1)), int(cols.group(1)))


def _read_xml_matrix(text):
    try:
        root = ElementTree.fromstring(text)
    except ElementTree.ParseError as error:
        raise ValueError(f"unreadable calibration file: {error}") from error
    node = root if root.tag == _MATRIX_KEY else root.find(f".//{_MATRIX_KEY}")
    if node is None:
        raise ValueError(f"no {_MATRIX_KEY} entry in calibration file")
    rows, cols, data = node.findtext("rows"), node.findtext("cols"), node.findtext("data")
    if rows is None or cols is None or data is None:
        raise ValueError(f"malformed {_MATRIX_KEY} entry in calibration file")
    values = [float(item) for item in data.split()]
    return _from_matrix(values, int(rows), int(cols))


def load_calibration(path):
    """Load intrinsics from a calibration file, or the defaults if no path is given.

    ``.xml`` and ``.yml`` files hold a ``depth_intrinsics`` matrix; any other
    file holds a single line of numbers.
    """
    if not path:
        return default_intrinsics()
    path = os.fspath(path)
    extension = os.path.splitext(path)[1].lower()
    with open(path, encoding="utf-8") as handle:
        if extension == ".xml":
            return _read_xml_matrix(handle.read())
        if extension == ".yml":
            return _read_yaml_matrix(handle.read())
        return parse_calibration_line(handle.readline())