# coltop2d

`coltop2d` reads and writes Coltop 2D (`.c2d`) rasters. A `.c2d` file holds
three single-precision bands made from one elevation model:

1. the elevation values, converted to float32,
2. the slope in degrees,
3. the aspect as an azimuth in degrees (north = 0, clockwise).

The layout is a 4-byte magic marker (`b"C2D\0"`), an 88-byte header (version,
width, height, six-term geotransform, nodata flag and value, data type code),
a 4-byte projection length followed by the projection text, and then the three
bands one after another. All numbers are little-endian.

## Installation

```
pip install coltop2d
```

The only runtime dependency is `numpy`.

## Terrain algorithms

`coltop2d.terrain` holds the 3x3 window algorithms that the format uses. Each
algorithm takes the nine window values (row by row), the destination nodata
value and a parameter object, and returns one float.

- `slope_horn` and `aspect_horn` use Horn's method (the `SOFT` option).
- `slope_zevenbergen` and `aspect_zevenbergen` use the Zevenbergen and Thorne
  method (the `SHARP` option, which is the default).

Parameters come from a geotransform: `create_slope_params(geotransform, scale,
slope_format)` returns a `SlopeParams` (`slope_format` 1 means degrees, any
other value percent), and `create_aspect_params(angle_as_azimuth, geotransform)`
returns an `AspectParams`. The aspect functions return the nodata value for a
flat window.

```python
import numpy as np
from coltop2d.terrain import create_slope_params, slope_zevenbergen, process_3x3

dem = np.arange(25, dtype=np.float32).reshape(5, 5)
geotransform = (0.0, 1.0, 0.0, 0.0, 0.0, 1.0)
params = create_slope_params(geotransform, 1.0, 1)
slope = process_3x3(dem, slope_zevenbergen, params, None, -9999.0, None, 2)
```

`process_3x3(source, algorithm, params, src_nodata, dst_nodata, progress,
band_index)` returns a float32 array of the source's shape. Border cells, and
every cell whose window touches the source nodata value, get the destination
nodata value (0 when `dst_nodata` is `None`). The progress callback receives
the fraction done of a three-band job; if it returns a false value,
`UserTerminated` is raised.

`Generic3x3Band` computes the same result lazily, one line at a time, through
`read_line(row)` or `read_all()`. With `byte_output=True` the lines are
`uint8`, each computed value rounded by adding 0.5 before truncation.

## Reading and writing `.c2d` files

`coltop2d.c2dformat` writes a new file from a single-band `RasterSource` (an
in-memory array with its geotransform, projection, nodata value, optional list
of origin file names and optional block size) and opens existing files.

```python
from coltop2d.c2dformat import RasterSource, create_copy, open_dataset, identify

source = RasterSource(
    data=dem,
    geotransform=(598000.0, 10.0, 0.0, 116000.0, 0.0, -10.0),
    projection="",
    nodata=None,
)
with create_copy("terrain.c2d", source, {"ALGORITHM": "SHARP"}, None) as created:
    print(created.metadata["C2D_ALGORITHM"])

assert identify("terrain.c2d")
with open_dataset("terrain.c2d", update=False) as ds:
    elevation = ds.read_band(1)
    slope = ds.read_band(2)
    aspect = ds.read_band(3)
```

`create_copy` returns the new file opened for update. The option keys are
matched without regard to case; `ALGORITHM` is `SOFT` for Horn's method and
anything else for Zevenbergen and Thorne. When the source has a nodata value,
the slope and aspect bands use -9999 as theirs and `nodata_values` on the
opened dataset reports all three. The returned dataset's `metadata` dictionary
holds `C2D_VERSION`, `C2D_CREATION_DATE_TIME`, `C2D_ALGORITHM` and, when the
source lists origin files, `C2D_ORIGIN_FILE_COUNT` and `C2D_ORIGIN_FILE_01`
onwards. This metadata is not stored in the file. If the progress callback
stops the job, `UserTerminated` is raised and the partial file is deleted.

A `C2DDataset` has `width`, `height`, `geotransform`, `projection`, `info`,
`read_band(index)`, `write_band(index, data)` (update mode only) and `close()`,
and works as a context manager.

Lower-level helpers work on the file sections directly: `write_magic`,
`write_header`, `read_header`, `write_projection` and `read_projection`.
`C2DInfo` describes the header. A file that is not a C2D raster, has a
truncated header or an unsupported version, or cannot be opened raises
`C2DFormatError`; so does a source with more than one band.

## What this package does not do

It reads no other raster formats: the source for `create_copy` must already be
in memory as an array. It has no command-line tool, no map display, no
overviews and no side files for metadata.