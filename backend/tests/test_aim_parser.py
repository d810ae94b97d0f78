"""
Tests for the AiM CSV decoder.
"""

import pytest
from numpy.testing import assert_allclose

from racelog.models.telemetry import AuxField
from racelog.services.aim_parser import (
    AimDecoder,
    detect_delimiter,
    native_g,
    normalize_header,
    resolve_columns,
)
from racelog.services.decoding import DecodeError
from racelog.utils.sample_data import encode_aim, encode_vbo, generate_oval_session


@pytest.fixture
def decoder():
    return AimDecoder()


@pytest.fixture
def trace():
    return generate_oval_session(n_laps=1)


class TestHeaderHandling:
    """Tests for delimiter and column resolution."""

    def test_delimiters(self):
        assert detect_delimiter("a,b,c") == ","
        assert detect_delimiter("a;b;c") == ";"
        assert detect_delimiter("a\tb\tc") == "\t"

    def test_normalize(self):
        assert normalize_header(" GPS_Latitude ") == "gps_lat"
        assert normalize_header("Lateral G") == "lateral_g"

    def test_alias_preference(self):
        columns = resolve_columns(["Time", "Speed", "GPS_Speed", "Latitude", "GPS_Lat", "GPS_Long"])
        assert columns["speed"] == 2
        assert columns["lat"] == 4
        assert columns["lon"] == 5
        assert columns["time"] == 0

    def test_native_g(self):
        assert native_g(0.8) == pytest.approx(0.8)
        assert native_g(9.80665) == pytest.approx(1.0)


class TestAimDecoder:
    """Tests for AimDecoder."""

    def test_sniff(self, decoder, trace):
        assert decoder.sniff(encode_aim(trace))
        assert not decoder.sniff(encode_vbo(trace))
        assert not decoder.sniff("Time,Lat,Lon\n1,2,3\n")

    def test_decode_session(self, decoder, trace):
        raw = decoder.decode(encode_aim(trace))

        assert raw.source == "aim"
        assert len(raw.samples) == len(trace)
        # The units row below the header
        assert raw.rejected_count == 1
        assert_allclose([s.t for s in raw.samples], trace.t * 1000, atol=1e-6)
        assert_allclose([s.lon for s in raw.samples], trace.lon, atol=1e-7)
        assert_allclose([s.speed_mps for s in raw.samples], trace.speed_mps, atol=0.01)

    def test_native_accelerations(self, decoder, trace):
        raw = decoder.decode(encode_aim(trace))
        assert_allclose([s.aux[AuxField.LAT_G] for s in raw.samples], trace.lat_g, atol=1e-3)
        assert_allclose([s.aux[AuxField.LON_G] for s in raw.samples], trace.lon_g, atol=1e-3)
        assert raw.samples[0].aux[AuxField.SATELLITES] == 10

    def test_without_native_accelerations(self, decoder, trace):
        raw = decoder.decode(encode_aim(trace, with_native_g=False))
        assert AuxField.LAT_G not in raw.samples[0].aux
        assert "Lat G" not in [f.name for f in raw.fields]

    def test_semicolon_file(self, decoder):
        text = (
            "Time;GPS_Speed;GPS_Latitude;GPS_Longitude\n"
            "0.000;36.0;28.412708;-81.379732\n"
            "0.100;36.0;28.412717;-81.379725\n"
        )
        raw = decoder.decode(text)
        assert len(raw.samples) == 2
        assert raw.samples[1].t == pytest.approx(100.0)
        assert raw.samples[0].speed_mps == pytest.approx(10.0)

    def test_speed_in_mps_inferred(self, decoder):
        text = (
            "Time,GPS_Speed,GPS_Lat,GPS_Long\n"
            "0.0,10.0,28.412708,-81.379732\n"
            "0.1,10.0,28.412717,-81.379725\n"
        )
        raw = decoder.decode(text)
        assert raw.samples[0].speed_mps == pytest.approx(10.0)

    def test_time_in_ms_inferred(self, decoder):
        text = (
            "Time,GPS_Speed,GPS_Lat,GPS_Long\n"
            "120000,36.0,28.412708,-81.379732\n"
            "120100,36.0,28.412717,-81.379725\n"
        )
        raw = decoder.decode(text)
        assert [s.t for s in raw.samples] == [0.0, 100.0]

    def test_rows_before_gps_lock_do_not_set_time_base(self, decoder):
        text = (
            "Time,GPS_Speed,GPS_Latitude,GPS_Longitude\n"
            "0.000,0,0,0\n"
            "5.000,40,28.4127,-81.3797\n"
            "5.100,40,28.41271,-81.37969\n"
        )
        raw = decoder.decode(text)
        assert raw.rejected_count == 1
        assert_allclose([s.t for s in raw.samples], [0.0, 100.0])

    def test_missing_gps_columns(self, decoder):
        with pytest.raises(DecodeError, match="AiM CSV missing required GPS columns"):
            decoder.decode("Time,GPS_Speed,GPS_Nsat\n0,10,9\n")

    def test_no_header(self, decoder):
        with pytest.raises(DecodeError, match="Could not find header row in AiM CSV"):
            decoder.decode("a,b\n1,2\n")

    def test_single_line(self, decoder):
        with pytest.raises(DecodeError, match="Empty file"):
            decoder.decode("Time,GPS_Speed,GPS_Lat,GPS_Long\n")
