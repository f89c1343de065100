"""Slope and aspect derivatives computed over a moving 3x3 window.

The window cells are numbered row by row::

    0 1 2
    3 4 5
    6 7 8

and cell 4 is the one the result belongs to.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

__all__ = [
    "UserTerminated",
    "SlopeParams",
    "AspectParams",
    "Generic3x3Band",
    "create_slope_params",
    "create_aspect_params",
    "slope_horn",
    "slope_zevenbergen",
    "aspect_horn",
    "aspect_zevenbergen",
    "process_3x3",
]

Algorithm = Callable[[Sequence[float], float, object], float]
ProgressCallback = Callable[[float], bool]

_DEGREES_PER_RADIAN = 180.0 / math.pi
_RADIANS_PER_DEGREE = math.pi / 180.0


class UserTerminated(Exception):
    """Raised when a progress callback asks for processing to stop."""


@dataclass(frozen=True)
class SlopeParams:
    """Cell resolutions and output settings for the slope algorithms.

    ``slope_format`` is 1 for degrees and anything else for percent.
    """

    nsres: float
    ewres: float
    scale: float = 1.0
    slope_format: int = 1


@dataclass(frozen=True)
class AspectParams:
    """Cell resolutions and angle convention for the aspect algorithms."""

    nsres: float
    ewres: float
    angle_as_azimuth: bool = True


def create_slope_params(geotransform, scale, slope_format) -> SlopeParams:
    """Build slope parameters from a six-term geotransform."""
    return SlopeParams(
        nsres=float(geotransform[5]),
        ewres=float(geotransform[1]),
        scale=float(scale),
        slope_format=int(slope_format),
    )


def create_aspect_params(angle_as_azimuth, geotransform) -> AspectParams:
    """Build aspect parameters from a six-term geotransform."""
    return AspectParams(
        nsres=float(geotransform[5]),
        ewres=float(geotransform[1]),
        angle_as_azimuth=bool(angle_as_azimuth),
    )


def _f32(value: float) -> float:
    return float(np.float32(value))


def _cells(window: Sequence[float]) -> list[float]:
    cells = [float(v) for v in window]
    if len(cells) != 9:
        raise ValueError(f"a 3x3 window needs 9 values, got {len(cells)}")
    return cells


def slope_horn(window, dst_nodata, params: SlopeParams) -> float:
    """Slope after Horn, in degrees or percent."""
    w = _cells(window)
    dx = ((w[0] + w[3] + w[3] + w[6]) - (w[2] + w[5] + w[5] + w[8])) / params.ewres
    dy = ((w[6] + w[7] + w[7] + w[8]) - (w[0] + w[1] + w[1] + w[2])) / params.nsres
    key = dx * dx + dy * dy
    if params.slope_format == 1:
        return _f32(math.atan(math.sqrt(key) / (8 * params.scale)) * _DEGREES_PER_RADIAN)
    return _f32(100 * (math.sqrt(key) / (8 * params.scale)))


def slope_zevenbergen(window, dst_nodata, params: SlopeParams) -> float:
    """Slope after Zevenbergen and Thorne, in degrees or percent."""
    w = _cells(window)
    dg = (-1.0 * w[3] + w[5]) / (2 * params.ewres)
    dh = (w[7] - w[1]) / (2 * params.nsres)
    key = dg * dg + dh * dh
    if params.slope_format == 1:
        return _f32(math.atan(math.sqrt(key)) * _DEGREES_PER_RADIAN)
    return _f32(100 * math.sqrt(key))


def _finish_aspect(aspect: float, flat: bool, dst_nodata: float, azimuth: bool) -> float:
    if flat:
        aspect = _f32(dst_nodata)
    elif azimuth:
        aspect = _f32(450.0 - aspect) if aspect > 90.0 else _f32(90.0 - aspect)
    elif aspect < 0:
        aspect = _f32(aspect + 360.0)
    if aspect == 360.0:
        aspect = 0.0
    return aspect


def aspect_horn(window, dst_nodata, params: AspectParams) -> float:
    """Aspect after Horn; flat windows give ``dst_nodata``."""
    w = _cells(window)
    dx = (w[2] + w[5] + w[5] + w[8]) - (w[0] + w[3] + w[3] + w[6])
    dy = (w[6] + w[7] + w[7] + w[8]) - (w[0] + w[1] + w[1] + w[2])
    aspect = _f32(math.atan2(dy, -dx) / _RADIANS_PER_DEGREE)
    return _finish_aspect(aspect, dx == 0 and dy == 0, dst_nodata, params.angle_as_azimuth)


def aspect_zevenbergen(window, dst_nodata, params: AspectParams) -> float:
    """Aspect after Zevenbergen and Thorne; flat windows give ``dst_nodata``."""
    w = _cells(window)
    dg = (-1.0 * w[3] + w[5]) / (2 * params.ewres)
    dh = (w[7] - w[1]) / (2 * params.nsres)
    aspect = _f32(math.atan2(-dh, -dg) / _RADIANS_PER_DEGREE)
    return _finish_aspect(aspect, dh == 0 and dg == 0, dst_nodata, params.angle_as_azimuth)


def _as_raster(source) -> np.ndarray:
    data = np.asarray(source, dtype=np.float32)
    if data.ndim != 2:
        raise ValueError("source raster must be two-dimensional")
    return data


def _interior_windows(lines: np.ndarray) -> np.ndarray:
    """All full 3x3 windows of a raster, shaped (rows-2, cols-2, 3, 3)."""
    rows, cols = lines.shape
    if rows >= 3 and cols >= 3:
        return sliding_window_view(lines, (3, 3))
    return np.empty((max(rows - 2, 0), 0, 3, 3), dtype=lines.dtype)


def process_3x3(
    source,
    algorithm: Algorithm,
    params,
    src_nodata: Optional[float] = None,
    dst_nodata: Optional[float] = None,
    progress: Optional[ProgressCallback] = None,
    band_index: int = 1,
) -> np.ndarray:
    """Apply ``algorithm`` to every 3x3 window of ``source``.

    Edge cells and windows touching a source nodata cell get the
    destination nodata value (0 when ``dst_nodata`` is None). Progress is
    reported as the share of a three-band job, ``band_index`` counting
    from 1; a callback returning False raises :class:`UserTerminated`.
    """
    data = _as_raster(source)
    height, width = data.shape
    report = progress if progress is not None else (lambda _fraction: True)

    if not report((band_index - 1) / 3.0):
        raise UserTerminated("User terminated")

    fill = np.float32(0.0 if dst_nodata is None else dst_nodata)
    dst_value = float(fill)
    src_value = None if src_nodata is None else np.float32(src_nodata)
    output = np.full((height, width), fill, dtype=np.float32)

    for row, row_windows in enumerate(_interior_windows(data), start=1):
        values = []
        for window in row_windows:
            cells = window.ravel()
            if src_value is not None and np.any(cells == src_value):
                values.append(dst_value)
            else:
                values.append(algorithm(cells.tolist(), dst_value, params))
        output[row, 1 : 1 + len(values)] = values

        done = (band_index - 1) / 3.0 + ((row + 1) / height) / 3.0
        if not report(done):
            raise UserTerminated("User terminated")

    report(band_index // 3)
    return output


class Generic3x3Band:
    """A band whose lines are computed on demand from a source raster."""

    def __init__(
        self,
        source,
        algorithm: Algorithm,
        params,
        src_nodata: Optional[float] = None,
        dst_nodata: Optional[float] = None,
        byte_output: bool = False,
    ):
        self._source = _as_raster(source)
        self.height, self.width = self._source.shape
        self.algorithm = algorithm
        self.params = params
        self.src_nodata = None if src_nodata is None else float(src_nodata)
        self.has_nodata = dst_nodata is not None
        self.dst_nodata = 0.0 if dst_nodata is None else float(dst_nodata)
        self.byte_output = bool(byte_output)
        self.dtype = np.uint8 if self.byte_output else np.float32
        self._lines: Optional[list[np.ndarray]] = None
        self._current = -1

    @property
    def nodata(self) -> Optional[float]:
        """The destination nodata value, or None when none is set."""
        return self.dst_nodata if self.has_nodata else None

    def _convert(self, value: float):
        if not self.byte_output:
            return np.float32(value)
        if not math.isfinite(value):
            return np.uint8(0)
        return np.uint8(int(value) % 256)

    def _load(self, row: int) -> None:
        if self._current == row and self._lines is not None:
            return
        if self._lines is not None and self._current == row - 1:
            self._lines = [self._lines[1], self._lines[2], self._source[row + 1]]
        else:
            self._lines = [self._source[r] for r in (row - 1, row, row + 1)]
        self._current = row

    def read_line(self, row: int) -> np.ndarray:
        """Compute one output line."""
        if not 0 <= row < self.height:
            raise IndexError(f"row {row} outside 0..{self.height - 1}")

        line = np.full(self.width, self._convert(self.dst_nodata), dtype=self.dtype)
        if row == 0 or row == self.height - 1:
            return line

        self._load(row)
        stacked = np.stack(self._lines)
        windows = _interior_windows(stacked)
        dst_value = _f32(self.dst_nodata)

        for column, window in enumerate(windows[0] if len(windows) else [], start=1):
            cells = window.ravel()
            if self.src_nodata is not None and np.any(
                cells.astype(np.float64) == self.src_nodata
            ):
                continue
            value = self.algorithm(cells.tolist(), dst_value, self.params)
            line[column] = self._convert(value + 0.5 if self.byte_output else value)
        return line

    def read_all(self) -> np.ndarray:
        """Compute every line and return the whole band."""
        if self.height == 0:
            return np.empty((0, self.width), dtype=self.dtype)
        return np.stack([self.read_line(row) for row in range(self.height)])