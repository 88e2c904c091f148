"""
Prometheus remote-write protobuf messages.

Only the fields the pipeline forwards are declared (``labels`` and
``samples``); exemplars, histograms and metadata sent by newer agents are
unknown fields and skipped by the parser. Message classes are built from a
descriptor at import time so no generated ``_pb2`` module is needed.
"""

from __future__ import annotations

from typing import List

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

from .models import Label, Sample, TimeSeries

PACKAGE = "prometheus"
PROTO_FILE = "ts_ingest/prometheus_remote.proto"

_F = descriptor_pb2.FieldDescriptorProto


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    fdp = descriptor_pb2.FileDescriptorProto(name=PROTO_FILE, package=PACKAGE, syntax="proto3")

    label = fdp.message_type.add(name="Label")
    label.field.add(name="name", number=1, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL)
    label.field.add(name="value", number=2, type=_F.TYPE_STRING, label=_F.LABEL_OPTIONAL)

    sample = fdp.message_type.add(name="Sample")
    sample.field.add(name="value", number=1, type=_F.TYPE_DOUBLE, label=_F.LABEL_OPTIONAL)
    sample.field.add(name="timestamp", number=2, type=_F.TYPE_INT64, label=_F.LABEL_OPTIONAL)

    series = fdp.message_type.add(name="TimeSeries")
    series.field.add(
        name="labels",
        number=1,
        type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=f".{PACKAGE}.Label",
    )
    series.field.add(
        name="samples",
        number=2,
        type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=f".{PACKAGE}.Sample",
    )

    request = fdp.message_type.add(name="WriteRequest")
    request.field.add(
        name="timeseries",
        number=1,
        type=_F.TYPE_MESSAGE,
        label=_F.LABEL_REPEATED,
        type_name=f".{PACKAGE}.TimeSeries",
    )
    return fdp


# private pool: never collides with another copy of the prometheus protos
_pool = descriptor_pool.DescriptorPool()
_pool.AddSerializedFile(_file_descriptor().SerializeToString())

PbLabel = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.Label"))
PbSample = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.Sample"))
PbTimeSeries = message_factory.GetMessageClass(_pool.FindMessageTypeByName(f"{PACKAGE}.TimeSeries"))
PbWriteRequest = message_factory.GetMessageClass(
    _pool.FindMessageTypeByName(f"{PACKAGE}.WriteRequest")
)


def parse_write_request(data: bytes) -> List[TimeSeries]:
    """Parse a serialized remote-write ``WriteRequest`` into pipeline records.

    Raises ``google.protobuf.message.DecodeError`` for malformed bytes and
    ``pydantic.ValidationError`` for content the models reject.
    """
    msg = PbWriteRequest()
    msg.ParseFromString(data)
    return [
        TimeSeries(
            labels=[Label(name=lbl.name, value=lbl.value) for lbl in ts.labels],
            samples=[Sample(value=s.value, timestamp=s.timestamp) for s in ts.samples],
        )
        for ts in msg.timeseries
    ]
