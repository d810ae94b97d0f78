"""
Raw decoded log (format-specific, before post-processing).

Decoders load source buffers into this structure before canonicalization.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from racelog.models.telemetry import FieldDescriptor, Sample


@dataclass
class RawLog:
    """Accepted samples and declared fields extracted from one buffer."""

    source: str                     # decoder name, e.g. "ubx", "vbo"
    samples: list[Sample]
    fields: list[FieldDescriptor] = field(default_factory=list)
    start_date: Optional[datetime] = None
    rejected_count: int = 0         # rows dropped by sanity filters
