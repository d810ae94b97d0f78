"""
u-blox UBX binary decoder.

Scans the buffer for UBX frames (sync 0xB5 0x62, class, id, little-endian
length, payload, two checksum bytes) and decodes NAV-PVT navigation
solutions into samples. A frame with a bad checksum or a truncated tail is
not skipped wholesale: the scan advances one byte and looks for the next
sync sequence.
"""

import logging
import struct
from datetime import datetime, timezone
from typing import NamedTuple, Optional, Union

from racelog.models.raw import RawLog
from racelog.models.telemetry import AuxField, FieldDescriptor, Sample
from racelog.services.decoding import SampleCollector, SpeedFallbackPolicy, bound_speed

logger = logging.getLogger(__name__)


UBX_SYNC = b"\xb5\x62"
UBX_NAV_CLASS = 0x01
UBX_NAV_PVT_ID = 0x07
NAV_PVT_LENGTH = 92
HEADER_LENGTH = 6       # sync(2) + class + id + length(2)
CHECKSUM_LENGTH = 2
SNIFF_BYTES = 1024
DAY_MS = 86_400_000

VALID_TIME = 0x01
VALID_DATE = 0x02
MIN_FIX_TYPE = 2        # 2D fix

# iTOW, year, month, day, hour, min, sec, valid, tAcc, nano, fixType, flags,
# flags2, numSV, lon, lat, height, hMSL, hAcc, vAcc, velN, velE, velD,
# gSpeed, headMot, sAcc, headAcc, pDOP
_NAV_PVT = struct.Struct("<IHBBBBBBIiBBBBiiiiIIiiiiiIIH")


class NavPvt(NamedTuple):
    itow: int
    year: int
    month: int
    day: int
    hour: int
    minute: int
    second: int
    valid: int
    t_acc: int
    nano: int
    fix_type: int
    flags: int
    flags2: int
    num_sv: int
    lon: int        # 1e-7 deg
    lat: int        # 1e-7 deg
    height: int     # mm above ellipsoid
    h_msl: int      # mm above mean sea level
    h_acc: int      # mm
    v_acc: int      # mm
    vel_n: int      # mm/s
    vel_e: int
    vel_d: int
    g_speed: int    # mm/s
    head_mot: int   # 1e-5 deg
    s_acc: int
    head_acc: int
    p_dop: int

    @property
    def time_of_day_ms(self) -> float:
        return (self.hour * 3600 + self.minute * 60 + self.second) * 1000 + self.nano / 1e6

    @property
    def has_valid_time(self) -> bool:
        return (self.valid & (VALID_TIME | VALID_DATE)) == (VALID_TIME | VALID_DATE)

    def utc_datetime(self) -> Optional[datetime]:
        try:
            return datetime(
                self.year, self.month, self.day, self.hour, self.minute, self.second,
                tzinfo=timezone.utc,
            )
        except ValueError:
            return None


def ubx_checksum(data: bytes) -> tuple[int, int]:
    """8-bit Fletcher checksum over class, id, length and payload."""
    ck_a = 0
    ck_b = 0
    for b in data:
        ck_a = (ck_a + b) & 0xFF
        ck_b = (ck_b + ck_a) & 0xFF
    return ck_a, ck_b


def build_frame(msg_class: int, msg_id: int, payload: bytes) -> bytes:
    """Frame a payload with sync bytes, header and checksum."""
    body = struct.pack("<BBH", msg_class, msg_id, len(payload)) + payload
    ck_a, ck_b = ubx_checksum(body)
    return UBX_SYNC + body + bytes((ck_a, ck_b))


def iter_frames(data: bytes):
    """
    Yield (class, id, payload) for every checksum-valid frame.

    Resynchronizes one byte at a time after a bad or truncated frame.
    """
    i = 0
    n = len(data)
    while i + HEADER_LENGTH + CHECKSUM_LENGTH <= n:
        if data[i] != UBX_SYNC[0] or data[i + 1] != UBX_SYNC[1]:
            i += 1
            continue

        msg_class = data[i + 2]
        msg_id = data[i + 3]
        (length,) = struct.unpack_from("<H", data, i + 4)
        end = i + HEADER_LENGTH + length + CHECKSUM_LENGTH
        if end > n:
            i += 1
            continue

        ck_a, ck_b = ubx_checksum(data[i + 2:i + HEADER_LENGTH + length])
        if ck_a != data[end - 2] or ck_b != data[end - 1]:
            i += 1
            continue

        yield msg_class, msg_id, data[i + HEADER_LENGTH:i + HEADER_LENGTH + length]
        i = end


def parse_nav_pvt(payload: bytes) -> Optional[NavPvt]:
    if len(payload) < NAV_PVT_LENGTH:
        return None
    return NavPvt._make(_NAV_PVT.unpack_from(payload, 0))


class UbxDecoder:
    """Decoder for u-blox UBX binary logs (NAV-PVT)."""

    name = "ubx"
    binary = True
    speed_policy = SpeedFallbackPolicy.SUBSTITUTE_PREVIOUS

    def sniff(self, data: Union[bytes, str]) -> bool:
        if not isinstance(data, (bytes, bytearray)):
            return False
        return UBX_SYNC in bytes(data[:SNIFF_BYTES])

    def decode(self, data: Union[bytes, str]) -> RawLog:
        if isinstance(data, str):
            data = data.encode("latin-1", errors="replace")
        data = bytes(data)

        collector = SampleCollector(self.name, "UBX")
        base_ms: Optional[float] = None
        start_date: Optional[datetime] = None
        skipped_messages = 0

        for msg_class, msg_id, payload in iter_frames(data):
            if msg_class != UBX_NAV_CLASS or msg_id != UBX_NAV_PVT_ID:
                skipped_messages += 1
                continue

            pvt = parse_nav_pvt(payload)
            if pvt is None or pvt.fix_type < MIN_FIX_TYPE or not pvt.has_valid_time:
                collector.reject()
                continue

            lat = pvt.lat / 1e7
            lon = pvt.lon / 1e7
            time_ms = pvt.time_of_day_ms
            t = 0.0 if base_ms is None else time_ms - base_ms
            if t < 0:
                # Crossed UTC midnight
                t += DAY_MS

            if not collector.position_ok(lat, lon, t):
                continue

            speed = bound_speed(pvt.g_speed / 1000.0, collector.last, self.speed_policy)
            if speed is None:
                collector.reject()
                continue

            if base_ms is None:
                base_ms = time_ms
                start_date = pvt.utc_datetime()

            collector.add(
                Sample(
                    t=t,
                    lat=lat,
                    lon=lon,
                    speed_mps=speed,
                    heading=pvt.head_mot / 1e5,
                    aux={
                        AuxField.SATELLITES: float(pvt.num_sv),
                        AuxField.H_ACCURACY: pvt.h_acc / 1000.0,
                        AuxField.ALTITUDE: pvt.h_msl / 1000.0,
                        AuxField.V_ACCURACY: pvt.v_acc / 1000.0,
                    },
                )
            )

        if skipped_messages:
            logger.debug("Skipped %d non NAV-PVT UBX messages", skipped_messages)

        # Out-of-order messages
        collector.samples.sort(key=lambda s: s.t)

        return collector.finish(
            fields=[
                FieldDescriptor.for_aux(AuxField.SATELLITES),
                FieldDescriptor.for_aux(AuxField.H_ACCURACY),
                FieldDescriptor.for_aux(AuxField.ALTITUDE),
                FieldDescriptor.for_aux(AuxField.V_ACCURACY),
            ],
            start_date=start_date,
        )
