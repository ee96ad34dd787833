"""Item sources, transforms and sinks."""

from batchspine.io.sinks import CallableSink, ItemSink, ListSink, SqlSink
from batchspine.io.sources import (
    END_OF_STREAM,
    CsvSource,
    ItemSource,
    IterableSource,
    ResumableSource,
    SqlQuerySource,
)
from batchspine.io.transforms import (
    DROPPED,
    CompositeTransform,
    FunctionTransform,
    ItemTransform,
    PassThrough,
    as_transform,
)

__all__ = [
    "END_OF_STREAM",
    "ItemSource",
    "ResumableSource",
    "IterableSource",
    "CsvSource",
    "SqlQuerySource",
    "DROPPED",
    "ItemTransform",
    "FunctionTransform",
    "PassThrough",
    "CompositeTransform",
    "as_transform",
    "ItemSink",
    "ListSink",
    "CallableSink",
    "SqlSink",
]
