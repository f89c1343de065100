import math

import numpy as np
import pytest

from coltop2d.terrain import (
    AspectParams,
    Generic3x3Band,
    SlopeParams,
    UserTerminated,
    aspect_horn,
    aspect_zevenbergen,
    create_aspect_params,
    create_slope_params,
    process_3x3,
    slope_horn,
    slope_zevenbergen,
)

GEOTRANSFORM = (0.0, 1.0, 0.0, 0.0, 0.0, -1.0)
EAST_RISING = [0, 1, 2, 0, 1, 2, 0, 1, 2]
PLANES = [(2.0, 3.0), (-1.0, 0.5), (0.3, -4.0), (-2.0, -2.5), (1.5, 0.0)]


def plane(a, b, rows=3, cols=3, offset=10.0):
    return np.fromfunction(lambda r, c: a * c + b * r + offset, (rows, cols), dtype=np.float64)


def degrees_params():
    return create_slope_params(GEOTRANSFORM, 1.0, 1)


def percent_params():
    return create_slope_params(GEOTRANSFORM, 1.0, 0)


def azimuth_params():
    return create_aspect_params(True, GEOTRANSFORM)


def terrain(rows=6, cols=7):
    rng = np.random.default_rng(3)
    return (rng.random((rows, cols)) * 50.0).astype(np.float32)


def test_create_slope_params_reads_resolutions():
    params = create_slope_params((100.0, 2.5, 0.0, 200.0, 0.0, -3.0), 2.0, 0)
    assert params == SlopeParams(nsres=-3.0, ewres=2.5, scale=2.0, slope_format=0)


def test_create_aspect_params_reads_resolutions():
    params = create_aspect_params(False, (100.0, 2.5, 0.0, 200.0, 0.0, -3.0))
    assert params == AspectParams(nsres=-3.0, ewres=2.5, angle_as_azimuth=False)


@pytest.mark.parametrize("algorithm", [slope_horn, slope_zevenbergen])
def test_flat_window_has_no_slope(algorithm):
    assert algorithm([7.0] * 9, -9999.0, degrees_params()) == 0.0


@pytest.mark.parametrize("algorithm", [slope_horn, slope_zevenbergen])
def test_unit_gradient_slope_in_degrees(algorithm):
    assert algorithm(EAST_RISING, 0.0, degrees_params()) == pytest.approx(45.0, abs=1e-4)


@pytest.mark.parametrize("algorithm", [slope_horn, slope_zevenbergen])
def test_unit_gradient_slope_in_percent(algorithm):
    assert algorithm(EAST_RISING, 0.0, percent_params()) == pytest.approx(100.0, abs=1e-3)


@pytest.mark.parametrize("a,b", PLANES)
@pytest.mark.parametrize("algorithm", [slope_horn, slope_zevenbergen])
def test_degrees_and_percent_agree(algorithm, a, b):
    window = plane(a, b).ravel().tolist()
    degrees = algorithm(window, 0.0, degrees_params())
    percent = algorithm(window, 0.0, percent_params())
    assert degrees == pytest.approx(math.degrees(math.atan(percent / 100.0)), abs=1e-3)


@pytest.mark.parametrize("a,b", PLANES)
def test_horn_and_zevenbergen_slopes_agree_on_planes(a, b):
    window = plane(a, b).ravel().tolist()
    assert slope_horn(window, 0.0, degrees_params()) == pytest.approx(
        slope_zevenbergen(window, 0.0, degrees_params()), abs=1e-4
    )


def test_horn_scale_divides_percent_slope():
    window = plane(2.0, 3.0).ravel().tolist()
    base = slope_horn(window, 0.0, create_slope_params(GEOTRANSFORM, 1.0, 0))
    scaled = slope_horn(window, 0.0, create_slope_params(GEOTRANSFORM, 2.0, 0))
    assert scaled == pytest.approx(base / 2.0, rel=1e-5)


@pytest.mark.parametrize("algorithm", [aspect_horn, aspect_zevenbergen])
def test_flat_window_aspect_is_nodata(algorithm):
    assert algorithm([5.0] * 9, -9999.0, azimuth_params()) == -9999.0


@pytest.mark.parametrize("algorithm", [aspect_horn, aspect_zevenbergen])
def test_east_rising_surface_faces_west(algorithm):
    assert algorithm(EAST_RISING, -9999.0, azimuth_params()) == pytest.approx(270.0, abs=1e-4)


@pytest.mark.parametrize("a,b", PLANES)
def test_horn_and_zevenbergen_aspects_agree_on_planes(a, b):
    window = plane(a, b).ravel().tolist()
    horn = aspect_horn(window, -9999.0, azimuth_params())
    zevenbergen = aspect_zevenbergen(window, -9999.0, azimuth_params())
    assert horn == pytest.approx(zevenbergen, abs=1e-3)
    assert 0.0 <= horn < 360.0


@pytest.mark.parametrize("a,b", PLANES)
@pytest.mark.parametrize("algorithm", [aspect_horn, aspect_zevenbergen])
def test_azimuth_and_math_angles_are_complementary(algorithm, a, b):
    window = plane(a, b).ravel().tolist()
    azimuth = algorithm(window, -9999.0, azimuth_params())
    angle = algorithm(window, -9999.0, create_aspect_params(False, GEOTRANSFORM))
    assert 0.0 <= angle < 360.0
    assert (azimuth + angle) % 360.0 == pytest.approx(90.0, abs=1e-3)


@pytest.mark.parametrize(
    "algorithm,params",
    [
        (slope_horn, degrees_params()),
        (slope_zevenbergen, degrees_params()),
        (aspect_horn, azimuth_params()),
        (aspect_zevenbergen, azimuth_params()),
    ],
)
def test_window_must_have_nine_cells(algorithm, params):
    with pytest.raises(ValueError):
        algorithm([1.0] * 8, 0.0, params)


def test_process_edges_are_nodata_and_interior_matches_algorithm():
    source = terrain()
    params = degrees_params()
    out = process_3x3(source, slope_zevenbergen, params, dst_nodata=-9999.0)
    assert out.shape == source.shape
    assert out.dtype == np.float32
    assert np.all(out[0] == -9999.0)
    assert np.all(out[-1] == -9999.0)
    assert np.all(out[:, 0] == -9999.0)
    assert np.all(out[:, -1] == -9999.0)
    for i in range(1, source.shape[0] - 1):
        for j in range(1, source.shape[1] - 1):
            window = source[i - 1 : i + 2, j - 1 : j + 2].ravel().tolist()
            assert out[i, j] == pytest.approx(slope_zevenbergen(window, -9999.0, params), abs=1e-5)


def test_process_without_dst_nodata_fills_edges_with_zero():
    out = process_3x3(terrain() + 1.0, slope_horn, degrees_params())
    assert out[0].tolist() == [0.0] * 7
    assert out[-1].tolist() == [0.0] * 7
    assert out[:, -1].tolist() == [0.0] * 6
    assert out[:, 0].tolist() == [0.0] * 6
    assert int(np.count_nonzero(out[1:-1, 1:-1] > 0.0)) == 4 * 5


def test_process_source_nodata_spreads_to_neighbourhood():
    source = terrain(7, 7)
    source[3, 3] = -1.0
    out = process_3x3(source, slope_horn, degrees_params(), src_nodata=-1.0, dst_nodata=-9999.0)
    assert out[2:5, 2:5].tolist() == [[-9999.0] * 3] * 3
    # 24 border cells plus the 3x3 block around the nodata cell
    assert int(np.count_nonzero(out == -9999.0)) == 33


@pytest.mark.parametrize("rows", [1, 2])
def test_process_short_raster_is_all_nodata(rows):
    out = process_3x3(terrain(rows, 5), slope_horn, degrees_params(), dst_nodata=-9999.0)
    assert out.shape == (rows, 5)
    assert np.all(out == -9999.0)


def test_process_reports_progress():
    calls = []

    def progress(fraction):
        calls.append(fraction)
        return True

    process_3x3(terrain(), slope_horn, degrees_params(), progress=progress, band_index=3)
    assert calls[0] == pytest.approx(2.0 / 3.0)
    assert calls[:-1] == sorted(calls[:-1])
    assert len(calls) == terrain().shape[0] - 2 + 2
    assert calls[-1] == 1


def test_process_stops_when_progress_refuses_at_start():
    with pytest.raises(UserTerminated):
        process_3x3(terrain(), slope_horn, degrees_params(), progress=lambda _f: False)


def test_process_stops_when_progress_refuses_midway():
    calls = []

    def progress(fraction):
        calls.append(fraction)
        return len(calls) < 3

    with pytest.raises(UserTerminated):
        process_3x3(terrain(), slope_horn, degrees_params(), progress=progress, band_index=2)
    assert len(calls) == 3


def test_process_rejects_non_raster():
    with pytest.raises(ValueError):
        process_3x3(np.zeros(5), slope_horn, degrees_params())


def test_band_matches_process():
    source = terrain()
    band = Generic3x3Band(source, aspect_horn, azimuth_params(), dst_nodata=-9999.0)
    expected = process_3x3(source, aspect_horn, azimuth_params(), dst_nodata=-9999.0)
    result = band.read_all()
    assert result.dtype == np.float32
    np.testing.assert_allclose(result, expected, atol=1e-5)


def test_band_reads_in_any_order():
    source = terrain(8, 6)
    forward = Generic3x3Band(source, slope_horn, degrees_params(), dst_nodata=-9999.0).read_all()
    band = Generic3x3Band(source, slope_horn, degrees_params(), dst_nodata=-9999.0)
    for row in [5, 4, 6, 2, 3, 3, 1, 7, 0]:
        np.testing.assert_array_equal(band.read_line(row), forward[row])


def test_band_byte_output_rounds_values():
    source = plane(1.0, 0.0, rows=5, cols=5).astype(np.float32)
    band = Generic3x3Band(source, slope_zevenbergen, degrees_params(), byte_output=True)
    result = band.read_all()
    assert result.dtype == np.uint8
    assert np.all(result[1:-1, 1:-1] == 45)
    assert np.all(result[0] == 0)
    assert np.all(result[:, -1] == 0)


def test_band_source_nodata():
    source = terrain(6, 6)
    source[2, 2] = -5.0
    band = Generic3x3Band(source, slope_horn, degrees_params(), src_nodata=-5.0, dst_nodata=-9999.0)
    result = band.read_all()
    assert result[1:4, 1:4].tolist() == [[-9999.0] * 3] * 3
    assert float(result[4, 4]) != -9999.0
    # 20 border cells plus the 3x3 block around the nodata cell
    assert int(np.count_nonzero(result == -9999.0)) == 29


def test_band_nodata_property():
    with_nodata = Generic3x3Band(terrain(), slope_horn, degrees_params(), dst_nodata=-9999.0)
    without = Generic3x3Band(terrain(), slope_horn, degrees_params())
    assert with_nodata.nodata == -9999.0
    assert without.nodata is None
    assert without.dst_nodata == 0.0


def test_band_row_out_of_range():
    band = Generic3x3Band(terrain(4, 4), slope_horn, degrees_params())
    with pytest.raises(IndexError):
        band.read_line(4)
    with pytest.raises(IndexError):
        band.read_line(-1)