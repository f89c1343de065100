"""Reading and writing Coltop 2D composite rasters (``.c2d``).

A C2D file holds a small binary header followed by three float32 bands
of the same size: the elevation model, its slope in degrees and its
aspect as an azimuth. The layout is::

    magic        4 bytes   b"C2D\\0"
    info        88 bytes   version, size, geotransform, nodata, data type
    proj length  4 bytes   little-endian int
    projection   n bytes   WKT text, not terminated
    band 1..3    4*w*h bytes each, little-endian float32
"""

from __future__ import annotations

import os
import struct
import time
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, Sequence

import numpy as np

from .terrain import (
    UserTerminated,
    aspect_horn,
    aspect_zevenbergen,
    create_aspect_params,
    create_slope_params,
    process_3x3,
    slope_horn,
    slope_zevenbergen,
)

__all__ = [
    "C2DFormatError",
    "C2DInfo",
    "RasterSource",
    "C2DDataset",
    "identify",
    "write_magic",
    "write_header",
    "read_header",
    "write_projection",
    "read_projection",
    "open_dataset",
    "create_copy",
]

ProgressCallback = Callable[[float], bool]

MAGIC = b"C2D\x00"
BAND_COUNT = 3
DERIVED_NODATA = -9999.0
DEFAULT_ALGORITHM = "SHARP"
CREATION_OPTIONS = (
    "<CreationOptionList>"
    "<Option name='ALGORITHM' type='string-select' default='SHARP'>"
    "<Value>SHARP</Value>"
    "<Value>SOFT</Value>"
    "</Option>"
    "</CreationOptionList>"
)

_INFO = struct.Struct("<iii4x6d?7xdi4x")
_LENGTH = struct.Struct("<i")
_PIXEL = np.dtype("<f4")
_HEADER_END = len(MAGIC) + _INFO.size

# Raster data type codes as stored in the header.
_TYPE_CODES = {
    np.dtype(np.uint8): 1,
    np.dtype(np.uint16): 2,
    np.dtype(np.int16): 3,
    np.dtype(np.uint32): 4,
    np.dtype(np.int32): 5,
    np.dtype(np.float32): 6,
    np.dtype(np.float64): 7,
}
_FLOAT32_CODE = 6


class C2DFormatError(Exception):
    """Raised when a file is not a readable C2D raster or cannot be written."""


@dataclass
class C2DInfo:
    """Header of a C2D file."""

    version: int = 1
    width: int = -1
    height: int = -1
    geotransform: tuple = (0.0, 1.0, 0.0, 0.0, 0.0, 1.0)
    nodata_enabled: bool = False
    nodata_value: float = 0.0
    dem_data_type: int = _FLOAT32_CODE


def _pack_info(info: C2DInfo) -> bytes:
    geotransform = [float(v) for v in info.geotransform]
    if len(geotransform) != 6:
        raise C2DFormatError("a geotransform needs six terms")
    return _INFO.pack(
        int(info.version),
        int(info.width),
        int(info.height),
        *geotransform,
        bool(info.nodata_enabled),
        float(info.nodata_value),
        int(info.dem_data_type),
    )


def _unpack_info(raw: bytes) -> C2DInfo:
    values = _INFO.unpack(raw)
    return C2DInfo(
        version=values[0],
        width=values[1],
        height=values[2],
        geotransform=tuple(values[3:9]),
        nodata_enabled=values[9],
        nodata_value=values[10],
        dem_data_type=values[11],
    )


def _data_type_code(dtype) -> int:
    try:
        return _TYPE_CODES[np.dtype(dtype)]
    except KeyError:
        raise C2DFormatError(f"unsupported raster data type {np.dtype(dtype)}") from None


@dataclass
class RasterSource:
    """An in-memory raster used as the source of :func:`create_copy`.

    ``data`` is a 2-D array for a single band, or a 3-D array of bands.
    ``block_size`` is (columns, rows) and defaults to one full line.
    """

    data: object
    geotransform: Sequence[float] = (0.0, 1.0, 0.0, 0.0, 0.0, 1.0)
    projection: str = ""
    nodata: Optional[float] = None
    files: Sequence[str] = field(default_factory=tuple)
    block_size: Optional[tuple] = None

    def __post_init__(self):
        self.data = np.asarray(self.data)
        if self.data.ndim not in (2, 3):
            raise ValueError("raster data must be two- or three-dimensional")

    @property
    def band_count(self) -> int:
        return 1 if self.data.ndim == 2 else self.data.shape[0]

    @property
    def band(self) -> np.ndarray:
        return self.data if self.data.ndim == 2 else self.data[0]

    @property
    def width(self) -> int:
        return self.data.shape[-1]

    @property
    def height(self) -> int:
        return self.data.shape[-2]


def identify(path) -> bool:
    """Tell whether ``path`` starts with the C2D magic number."""
    try:
        with open(path, "rb") as handle:
            head = handle.read(len(MAGIC))
    except OSError:
        return False
    return len(head) >= 3 and head == MAGIC


def _open_for(path, mode: str, purpose: str):
    try:
        return open(path, mode)
    except OSError as exc:
        raise C2DFormatError(f"Opening file {os.fspath(path)} for {purpose} failed") from exc


def write_magic(path) -> None:
    """Create ``path`` holding only the magic number."""
    with _open_for(path, "wb", "writing magic number") as handle:
        handle.write(MAGIC)


def write_header(path, info: C2DInfo) -> None:
    """Append the header block to ``path``."""
    with _open_for(path, "ab", "writing header") as handle:
        handle.write(_pack_info(info))


def read_header(path) -> C2DInfo:
    """Read the header block; raise when its version is not supported."""
    with _open_for(path, "rb", "reading header") as handle:
        handle.seek(len(MAGIC))
        raw = handle.read(_INFO.size)
    if len(raw) != _INFO.size:
        raise C2DFormatError(f"header of {os.fspath(path)} is truncated")
    info = _unpack_info(raw)
    expected = C2DInfo().version
    if info.version != expected:
        raise C2DFormatError(
            f"Unable to open, driver version conflit (found {info.version}, expected {expected})"
        )
    return info


def write_projection(path, projection) -> None:
    """Append the projection length and text to ``path``."""
    encoded = (projection or "").encode("utf-8")
    with _open_for(path, "ab", "writing projection") as handle:
        handle.write(_LENGTH.pack(len(encoded)))
        if encoded:
            handle.write(encoded)


def _read_projection_bytes(path) -> bytes:
    with _open_for(path, "rb", "reading projection") as handle:
        handle.seek(_HEADER_END)
        raw = handle.read(_LENGTH.size)
        if len(raw) != _LENGTH.size:
            return b""
        (length,) = _LENGTH.unpack(raw)
        return handle.read(length) if length > 0 else b""


def read_projection(path) -> Optional[str]:
    """Return the stored projection, or None when there is none."""
    raw = _read_projection_bytes(path)
    return raw.decode("utf-8", errors="replace") if raw else None


class C2DDataset:
    """An open C2D file with its three bands."""

    def __init__(self, path, info: C2DInfo, projection_bytes: bytes, update: bool, handle):
        self.path = os.fspath(path)
        self.info = info
        self.update = bool(update)
        self._projection = projection_bytes
        self._file = handle
        self.metadata: dict[str, str] = {}
        if info.nodata_enabled:
            self.nodata_values = (float(info.nodata_value), DERIVED_NODATA, DERIVED_NODATA)
        else:
            self.nodata_values = (None, None, None)

    @property
    def width(self) -> int:
        return self.info.width

    @property
    def height(self) -> int:
        return self.info.height

    @property
    def geotransform(self) -> tuple:
        return tuple(self.info.geotransform)

    @property
    def projection(self) -> Optional[str]:
        return self._projection.decode("utf-8", errors="replace") if self._projection else None

    @property
    def closed(self) -> bool:
        return self._file is None

    def _check_open(self) -> None:
        if self._file is None:
            raise ValueError("dataset is closed")

    def _shape(self) -> tuple:
        return max(self.height, 0), max(self.width, 0)

    def _band_offset(self, index: int) -> int:
        if not 1 <= index <= BAND_COUNT:
            raise IndexError(f"band {index} outside 1..{BAND_COUNT}")
        rows, cols = self._shape()
        base = _HEADER_END + _LENGTH.size + len(self._projection)
        return base + (index - 1) * _PIXEL.itemsize * rows * cols

    def read_band(self, index: int) -> np.ndarray:
        """Return band ``index`` (1 to 3) as a float32 array."""
        self._check_open()
        offset = self._band_offset(index)
        rows, cols = self._shape()
        size = rows * cols * _PIXEL.itemsize
        self._file.seek(offset)
        raw = self._file.read(size)
        if len(raw) < size:
            raw += bytes(size - len(raw))
        return np.frombuffer(raw, dtype=_PIXEL).astype(np.float32).reshape(rows, cols)

    def _write_window(self, index: int, x: int, y: int, block) -> None:
        self._check_open()
        if not self.update:
            raise C2DFormatError("dataset is opened read-only")
        offset = self._band_offset(index)
        cols = self._shape()[1]
        for r, row in enumerate(np.asarray(block)):
            self._file.seek(offset + ((y + r) * cols + x) * _PIXEL.itemsize)
            self._file.write(np.asarray(row).astype(_PIXEL).tobytes())

    def write_band(self, index: int, data) -> None:
        """Overwrite band ``index`` with ``data``, converted to float32."""
        array = np.asarray(data, dtype=np.float32)
        if array.shape != self._shape():
            raise ValueError(f"band data must have shape {self._shape()}, got {array.shape}")
        self._write_window(index, 0, 0, array)
        self._file.flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


def open_dataset(path, update: bool = False) -> C2DDataset:
    """Open a C2D file for reading, or for writing too when ``update``."""
    if not identify(path):
        raise C2DFormatError(f"{os.fspath(path)} is not a C2D file")
    info = read_header(path)
    projection = _read_projection_bytes(path)
    try:
        handle = open(path, "r+b" if update else "rb")
    except OSError as exc:
        raise C2DFormatError(f"Failed to re-open {os.fspath(path)} within C2D driver.") from exc
    return C2DDataset(path, info, projection, update, handle)


def _copy_blocks(dataset: C2DDataset, band: np.ndarray, block_size, report) -> None:
    height, width = band.shape
    if width == 0 or height == 0:
        return
    block_x, block_y = block_size if block_size else (width, 1)
    total = ((width + block_x - 1) // block_x) * ((height + block_y - 1) // block_y)
    done = 0
    for y in range(0, height, block_y):
        for x in range(0, width, block_x):
            if not report(done / total / 3):
                raise UserTerminated("User terminated")
            done += 1
            dataset._write_window(1, x, y, band[y : y + block_y, x : x + block_x])


def _delete(path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def create_copy(
    path,
    source: RasterSource,
    options: Optional[Mapping[str, str]] = None,
    progress: Optional[ProgressCallback] = None,
) -> C2DDataset:
    """Write ``source`` as a C2D file with slope and aspect bands.

    The ``ALGORITHM`` option selects ``SOFT`` (Horn) or ``SHARP``
    (Zevenbergen and Thorne, the default). The new file is returned
    opened for update.
    """
    if source.band_count != 1:
        raise C2DFormatError(
            "C2D driver does not support source dataset with less or more than one band."
        )
    report = progress if progress is not None else (lambda _fraction: True)
    if not report(0.0):
        raise UserTerminated("User terminated")

    band = source.band
    has_nodata = source.nodata is not None
    info = C2DInfo(
        width=source.width,
        height=source.height,
        geotransform=tuple(float(v) for v in source.geotransform),
        nodata_enabled=has_nodata,
        nodata_value=float(source.nodata) if has_nodata else 0.0,
        dem_data_type=_data_type_code(band.dtype),
    )
    write_magic(path)
    write_header(path, info)
    write_projection(path, source.projection)

    normalized = {str(k).upper(): v for k, v in (options or {}).items()}
    algorithm = normalized.get("ALGORITHM") or DEFAULT_ALGORITHM
    soft = algorithm == "SOFT"
    dst_nodata = DERIVED_NODATA if has_nodata else None

    dataset = open_dataset(path, update=True)
    try:
        _copy_blocks(dataset, band, source.block_size, report)

        slope = process_3x3(
            band,
            slope_horn if soft else slope_zevenbergen,
            create_slope_params(info.geotransform, 1.0, 1),
            src_nodata=source.nodata,
            dst_nodata=dst_nodata,
            progress=report,
            band_index=2,
        )
        dataset._write_window(2, 0, 0, slope)

        aspect = process_3x3(
            band,
            aspect_horn if soft else aspect_zevenbergen,
            create_aspect_params(True, info.geotransform),
            src_nodata=source.nodata,
            dst_nodata=dst_nodata,
            progress=report,
            band_index=3,
        )
        dataset._write_window(3, 0, 0, aspect)
        dataset._file.flush()
    except BaseException:
        dataset.close()
        _delete(path)
        raise

    dataset.metadata["C2D_VERSION"] = str(C2DInfo().version)
    dataset.metadata["C2D_CREATION_DATE_TIME"] = time.ctime() + "\n"
    files = list(source.files)
    if files:
        dataset.metadata["C2D_ORIGIN_FILE_COUNT"] = str(len(files))
        for number, name in enumerate(files, start=1):
            dataset.metadata[f"C2D_ORIGIN_FILE_{number:02d}"] = name
    dataset.metadata["C2D_ALGORITHM"] = algorithm
    return dataset