"""
Tests for format detection and the decode entry points.
"""

import pytest

from racelog.services.decoding import DecodeError
from racelog.services.dispatcher import (
    DECODERS,
    decode_buffer,
    detect_format,
    get_decoder,
    parse_log_file,
)
from racelog.utils.sample_data import (
    encode_aim,
    encode_alfano,
    encode_nmea,
    encode_ubx,
    encode_vbo,
    generate_oval_session,
)


@pytest.fixture(scope="module")
def trace():
    return generate_oval_session(n_laps=1)


@pytest.fixture(scope="module")
def buffers(trace):
    return {
        "ubx": encode_ubx(trace),
        "vbo": encode_vbo(trace),
        "alfano": encode_alfano(trace),
        "aim": encode_aim(trace),
        "nmea": encode_nmea(trace),
    }


class TestDetectFormat:
    """Tests for format sniffing."""

    def test_decoder_order(self):
        assert [d.name for d in DECODERS] == ["ubx", "vbo", "alfano", "aim", "nmea"]

    @pytest.mark.parametrize("fmt", ["ubx", "vbo", "alfano", "aim", "nmea"])
    def test_detects_each_format_from_bytes(self, buffers, fmt):
        data = buffers[fmt]
        if isinstance(data, str):
            data = data.encode("utf-8")
        assert detect_format(data).name == fmt

    @pytest.mark.parametrize("fmt", ["vbo", "alfano", "aim", "nmea"])
    def test_detects_text_formats_from_str(self, buffers, fmt):
        assert detect_format(buffers[fmt]).name == fmt

    def test_alfano_without_preamble(self, buffers):
        lines = buffers["alfano"].splitlines()
        body = [line for line in lines if not line.startswith(("Driver:", "Track:", "Date:", "Session:"))]
        text = "\n".join(body) + "\n"

        assert detect_format(text).name == "alfano"
        run = decode_buffer(text, name="no preamble")
        names = [f.name for f in run.fields]
        for channel in ("Lat G (Native)", "Lon G (Native)", "Temp 1", "Water Temp"):
            assert channel in names

    def test_unrecognized_falls_back_to_nmea(self):
        assert detect_format(b"hello world\nnothing to see\n").name == "nmea"

    def test_empty_input(self):
        with pytest.raises(DecodeError, match="Empty file"):
            detect_format(b"")


class TestGetDecoder:
    def test_known(self):
        assert get_decoder("aim").name == "aim"

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown log format: gpx"):
            get_decoder("gpx")


class TestDecodeBuffer:
    """Tests for decode_buffer and parse_log_file."""

    def test_decode_sniffed(self, buffers, trace):
        run = decode_buffer(buffers["vbo"], name="session")
        assert run.metadata.name == "session"
        assert run.metadata.source_format == "vbo"
        assert run.metadata.sample_count == len(trace)

    def test_forced_format(self, buffers):
        run = decode_buffer(buffers["alfano"], name="forced", format_name="alfano")
        assert run.metadata.source_format == "alfano"

    def test_forced_wrong_format_fails(self, buffers):
        with pytest.raises(DecodeError):
            decode_buffer(buffers["vbo"], name="wrong", format_name="aim")

    def test_undecodable_fallback_fails(self):
        with pytest.raises(DecodeError, match="No valid GPS data found in NMEA file"):
            decode_buffer(b"hello world\n", name="junk")

    def test_run_id_depends_on_content(self, buffers):
        a = decode_buffer(buffers["vbo"], name="same")
        b = decode_buffer(buffers["vbo"], name="same")
        c = decode_buffer(buffers["nmea"], name="same")
        assert a.metadata.id == b.metadata.id
        assert a.metadata.id != c.metadata.id

    def test_parse_log_file(self, tmp_path, buffers):
        path = tmp_path / "morning.ubx"
        path.write_bytes(buffers["ubx"])

        run = parse_log_file(path)
        assert run.metadata.name == "morning"
        assert run.metadata.source_file == path
        assert run.metadata.source_format == "ubx"
        assert run.metadata.recorded_at is not None
