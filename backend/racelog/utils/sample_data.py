"""
Sample data generator for testing.

Simulates laps of an oval circuit and encodes the session in each supported
log format (UBX, NMEA, VBO, Alfano CSV, AiM CSV).
"""

import math
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import numpy as np
from numpy.typing import NDArray

from racelog.models.timing import Course, GeoPoint, TimingLine
from racelog.services.nmea_parser import nmea_checksum
from racelog.services.ubx_parser import UBX_NAV_CLASS, UBX_NAV_PVT_ID, build_frame
from racelog.utils.coordinates import EARTH_RADIUS_M


DEMO_CENTER_LAT = 28.4127
DEMO_CENTER_LON = -81.3797
OVAL_A_M = 150.0    # semi-axis east
OVAL_B_M = 80.0     # semi-axis north
BASE_SPEED_MPS = 22.0
SPEED_SWING_MPS = 6.0
START_THETA = -0.3  # session starts a little before the start/finish line
DEMO_START = datetime(2024, 3, 9, 14, 30, 0, tzinfo=timezone.utc)
GRAVITY = 9.80665


@dataclass
class SessionTrace:
    """Ground truth of a simulated session, one row per fix."""

    t: NDArray[np.float64]          # seconds from start
    lat: NDArray[np.float64]
    lon: NDArray[np.float64]
    speed_mps: NDArray[np.float64]
    heading: NDArray[np.float64]    # degrees, clockwise from north
    lat_g: NDArray[np.float64]
    lon_g: NDArray[np.float64]
    start: datetime

    def __len__(self) -> int:
        return len(self.t)


def local_to_geo(x: NDArray[np.float64], y: NDArray[np.float64],
                 center_lat: float = DEMO_CENTER_LAT, center_lon: float = DEMO_CENTER_LON):
    """Inverse of the equirectangular projection used for lap timing."""
    lat = center_lat + np.degrees(y / EARTH_RADIUS_M)
    lon = center_lon + np.degrees(x / (EARTH_RADIUS_M * math.cos(math.radians(center_lat))))
    return lat, lon


def _oval_point(theta: float) -> tuple[float, float]:
    return OVAL_A_M * math.cos(theta), OVAL_B_M * math.sin(theta)


def _line_at(theta: float, inner: float = 0.8, outer: float = 1.2) -> TimingLine:
    """Timing line across the oval, radial at parameter theta."""
    x, y = _oval_point(theta)
    lats, lons = local_to_geo(np.array([x * inner, x * outer]), np.array([y * inner, y * outer]))
    return TimingLine(GeoPoint(float(lats[0]), float(lons[0])), GeoPoint(float(lats[1]), float(lons[1])))


def demo_course(with_sectors: bool = True) -> Course:
    """Course matching the simulated oval (start/finish on the east end)."""
    start = _line_at(0.0, inner=130.0 / OVAL_A_M, outer=170.0 / OVAL_A_M)
    if not with_sectors:
        return Course(name="Full", start_finish=start)
    return Course(
        name="Full",
        start_finish=start,
        sector_2=_line_at(2 * math.pi / 3),
        sector_3=_line_at(4 * math.pi / 3),
    )


def generate_oval_session(
    n_laps: int = 3,
    sample_rate_hz: float = 10.0,
    base_speed_mps: float = BASE_SPEED_MPS,
    speed_swing_mps: float = SPEED_SWING_MPS,
    start: datetime = DEMO_START,
) -> SessionTrace:
    """
    Simulate counter-clockwise laps of the demo oval.

    Speed drops in the tight ends and peaks on the long sides, so each lap
    has two speed peaks and two valleys.
    """
    dt = 1.0 / sample_rate_hz
    theta_end = START_THETA + 2 * math.pi * n_laps + 0.6

    thetas = []
    theta = START_THETA
    while theta < theta_end:
        thetas.append(theta)
        v = base_speed_mps - speed_swing_mps * math.cos(2 * theta)
        ds_dtheta = math.hypot(OVAL_A_M * math.sin(theta), OVAL_B_M * math.cos(theta))
        theta += v * dt / ds_dtheta

    th = np.array(thetas)
    x = OVAL_A_M * np.cos(th)
    y = OVAL_B_M * np.sin(th)
    lat, lon = local_to_geo(x, y)

    t = np.arange(len(th)) * dt
    speed = base_speed_mps - speed_swing_mps * np.cos(2 * th)
    heading = np.degrees(np.arctan2(-OVAL_A_M * np.sin(th), OVAL_B_M * np.cos(th))) % 360.0

    yaw_rate = np.gradient(np.unwrap(np.radians(heading)), t)
    lat_g = speed * yaw_rate / GRAVITY
    lon_g = np.gradient(speed, t) / GRAVITY

    return SessionTrace(t=t, lat=lat, lon=lon, speed_mps=speed, heading=heading,
                        lat_g=lat_g, lon_g=lon_g, start=start)


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------

def nav_pvt_payload(trace: SessionTrace, i: int, fix_type: int = 3, valid: int = 0x07) -> bytes:
    """92-byte NAV-PVT payload for fix i of the trace."""
    wall = trace.start + timedelta(seconds=float(trace.t[i]))
    nano = wall.microsecond * 1000
    heading_rad = math.radians(trace.heading[i])
    speed_mm = int(round(trace.speed_mps[i] * 1000))
    payload = struct.pack(
        "<IHBBBBBBIiBBBBiiiiIIiiiiiIIH",
        int(trace.t[i] * 1000) % 604_800_000,
        wall.year, wall.month, wall.day, wall.hour, wall.minute, wall.second,
        valid,
        50,
        nano,
        fix_type,
        0x01,
        0,
        12,
        int(round(trace.lon[i] * 1e7)),
        int(round(trace.lat[i] * 1e7)),
        30_000,
        31_500,
        1_500,
        2_500,
        int(round(speed_mm * math.cos(heading_rad))),
        int(round(speed_mm * math.sin(heading_rad))),
        0,
        speed_mm,
        int(round(trace.heading[i] * 1e5)),
        200,
        100_000,
        150,
    )
    # reserved, headVeh, magDec, magAcc
    return payload + bytes(92 - len(payload))


def encode_ubx(trace: SessionTrace, corrupt_every: Optional[int] = None) -> bytes:
    """
    UBX stream of NAV-PVT frames, interleaved with NAV-STATUS frames.

    With corrupt_every=n, one payload byte of every n-th NAV-PVT frame is
    flipped after the checksum was computed.
    """
    out = bytearray()
    for i in range(len(trace)):
        frame = bytearray(build_frame(UBX_NAV_CLASS, UBX_NAV_PVT_ID, nav_pvt_payload(trace, i)))
        if corrupt_every and i % corrupt_every == corrupt_every - 1:
            frame[6 + 30] ^= 0xFF
        out += frame
        if i % 10 == 0:
            out += build_frame(UBX_NAV_CLASS, 0x03, bytes(16))
    return bytes(out)


def _nmea_coordinate(value: float, degree_digits: int, hemispheres: str) -> tuple[str, str]:
    hemisphere = hemispheres[0] if value >= 0 else hemispheres[1]
    value = abs(value)
    degrees = int(value)
    minutes = (value - degrees) * 60
    return f"{degrees:0{degree_digits}d}{minutes:07.4f}", hemisphere


def rmc_sentence(wall: datetime, lat: float, lon: float, speed_mps: float,
                 course: float, status: str = "A") -> str:
    lat_s, ns = _nmea_coordinate(lat, 2, "NS")
    lon_s, ew = _nmea_coordinate(lon, 3, "EW")
    body = (
        f"GPRMC,{wall:%H%M%S}.{wall.microsecond // 10000:02d},{status},"
        f"{lat_s},{ns},{lon_s},{ew},{speed_mps / 0.514444:.2f},{course:.1f},"
        f"{wall:%d%m%y},,,A"
    )
    return f"${body}*{nmea_checksum(body):02X}"


def encode_nmea(trace: SessionTrace, with_header: bool = True) -> str:
    """Tab-delimited NMEA datalog with RPM and water temperature columns."""
    lines = []
    if with_header:
        lines.append("Sentence\tRPM\tWater Temp")
    for i in range(len(trace)):
        wall = trace.start + timedelta(seconds=float(trace.t[i]))
        sentence = rmc_sentence(wall, trace.lat[i], trace.lon[i], trace.speed_mps[i], trace.heading[i])
        rpm = 9000 + 3000 * (trace.speed_mps[i] - BASE_SPEED_MPS) / SPEED_SWING_MPS
        lines.append(f'"{sentence}"\t{rpm:.0f}\t{55 + i * 0.01:.1f}')
    return "\n".join(lines) + "\n"


def _pack_degrees_minutes(value: float) -> float:
    sign = -1.0 if value < 0 else 1.0
    value = abs(value)
    degrees = math.floor(value)
    return sign * (degrees * 100 + (value - degrees) * 60)


def encode_vbo(trace: SessionTrace, packed_coordinates: bool = False) -> str:
    """VBOX sectioned text with sats, time, position, velocity (km/h), heading, height."""
    lines = [
        f"File created on {trace.start:%d/%m/%Y} at {trace.start:%H:%M:%S}",
        "",
        "[header]",
        "satellites",
        "time",
        "latitude",
        "longitude",
        "velocity kmh",
        "heading",
        "height",
        "",
        "[column names]",
        "sats time lat long velocity heading height",
        "",
        "[data]",
    ]
    for i in range(len(trace)):
        wall = trace.start + timedelta(seconds=float(trace.t[i]))
        lat, lon = float(trace.lat[i]), float(trace.lon[i])
        if packed_coordinates:
            lat, lon = _pack_degrees_minutes(lat), _pack_degrees_minutes(lon)
        lines.append(
            f"011 {wall:%H%M%S}.{wall.microsecond // 10000:02d} "
            f"{lat:.7f} {lon:.7f} {trace.speed_mps[i] * 3.6:.3f} "
            f"{trace.heading[i]:.2f} {30.0:.2f}"
        )
    return "\n".join(lines) + "\n"


def encode_alfano(trace: SessionTrace, delimiter: str = ",") -> str:
    """Alfano export with metadata preamble; a metadata line repeats mid-file."""
    d = delimiter
    lines = [
        "Driver: Test Driver",
        "Track: Demo Oval",
        f"Date: {trace.start:%d/%m/%Y}",
        "",
        d.join(["Time", "GPS_Latitude", "GPS_Longitude", "GPS_Speed", "GPS_Heading",
                "LatAcc", "LonAcc", "RPM", "T1", "Water"]),
    ]
    middle = len(trace) // 2
    for i in range(len(trace)):
        if i == middle:
            lines.append("Session: 2")
        lines.append(d.join([
            f"{trace.t[i]:.2f}",
            f"{trace.lat[i]:.7f}",
            f"{trace.lon[i]:.7f}",
            f"{trace.speed_mps[i] * 3.6:.2f}",
            f"{trace.heading[i]:.1f}",
            f"{trace.lat_g[i]:.3f}",
            f"{trace.lon_g[i]:.3f}",
            f"{9000 + 100 * math.sin(i / 10):.0f}",
            "85.0",
            "52.0",
        ]))
    return "\n".join(lines) + "\n"


def encode_aim(trace: SessionTrace, with_native_g: bool = True) -> str:
    """Race Studio style CSV: short preamble, header, units row, data."""
    headers = ["Time", "GPS_Speed", "GPS_Latitude", "GPS_Longitude", "GPS_Heading", "GPS_Nsat", "RPM"]
    units = ["s", "km/h", "deg", "deg", "deg", "#", "rpm"]
    if with_native_g:
        headers += ["Lateral G", "Longitudinal G"]
        units += ["g", "g"]

    def row(cells):
        return ",".join(f'"{c}"' for c in cells)

    lines = [
        row(["Format", "AiM CSV File"]),
        row(["Session", "Demo"]),
        row(headers),
        row(units),
    ]
    for i in range(len(trace)):
        cells = [
            f"{trace.t[i]:.3f}",
            f"{trace.speed_mps[i] * 3.6:.2f}",
            f"{trace.lat[i]:.7f}",
            f"{trace.lon[i]:.7f}",
            f"{trace.heading[i]:.1f}",
            "10",
            f"{9000 + 100 * math.sin(i / 10):.0f}",
        ]
        if with_native_g:
            cells += [f"{trace.lat_g[i]:.3f}", f"{trace.lon_g[i]:.3f}"]
        lines.append(row(cells))
    return "\n".join(lines) + "\n"


def generate_test_data_set(output_folder: Path, n_laps: int = 3) -> list[Path]:
    """Write one demo session per supported format."""
    output_folder.mkdir(parents=True, exist_ok=True)
    trace = generate_oval_session(n_laps=n_laps)

    files = []
    for filename, content in [
        ("oval_ubx.ubx", encode_ubx(trace)),
        ("oval_nmea.nmea", encode_nmea(trace)),
        ("oval_vbox.vbo", encode_vbo(trace)),
        ("oval_alfano.csv", encode_alfano(trace)),
        ("oval_aim.csv", encode_aim(trace)),
    ]:
        path = output_folder / filename
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        files.append(path)
    return files


if __name__ == "__main__":
    output = Path("./data/runs")
    files = generate_test_data_set(output)
    print(f"Generated {len(files)} test files in {output}")
    for f in files:
        print(f"  - {f.name}")
