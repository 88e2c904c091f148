"""
Pydantic data models for time-series intake.

Shapes mirror the Prometheus remote-write ``WriteRequest``/``TimeSeries``
messages; remote-write protobuf bodies and JSON bodies both decode to them.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class Label(BaseModel):
    """Single name/value label pair."""

    model_config = ConfigDict(frozen=True)

    name: str
    value: str

    @field_validator("name")
    @classmethod
    def _non_empty(cls, v):
        if not v:
            raise ValueError("Label name must not be empty")
        return v


class Sample(BaseModel):
    """Timestamped sample. ``timestamp`` is milliseconds since the epoch."""

    # NaN/Inf are legal sample values; write them as named string literals
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="strings")

    value: float
    timestamp: int


class TimeSeries(BaseModel):
    """Labeled sequence of samples, forwarded as received."""

    model_config = ConfigDict(frozen=True, ser_json_inf_nan="strings")

    labels: List[Label] = []
    samples: List[Sample] = []

    @property
    def name(self) -> Optional[str]:
        for label in self.labels:
            if label.name == "__name__":
                return label.value
        return None


class WriteRequest(BaseModel):
    """Decoded intake payload."""

    timeseries: List[TimeSeries] = []
