"""
Item transforms: turn one read item into one output item.

A transform may return:
- a value: written by the sink,
- ``None`` or ``DROPPED``: the item is filtered (counted, not written),
- or raise: the step's fault policy decides retry, skip or fatal.

Transforms are re-invoked on the same item when the policy grants a
retry, so they must not carry side effects from a failed attempt.  A
transform that cannot meet that sets ``retryable = False`` and its
errors go straight to the skip/fatal decision.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any


class _Dropped:
    def __repr__(self) -> str:
        return "DROPPED"


DROPPED = _Dropped()


def is_dropped(value: Any) -> bool:
    return value is None or value is DROPPED


class ItemTransform(ABC):
    """Base class for item transforms."""

    retryable: bool = True

    @abstractmethod
    def apply(self, item: Any) -> Any: ...

    def __call__(self, item: Any) -> Any:
        return self.apply(item)


class FunctionTransform(ItemTransform):
    """Wrap a plain callable."""

    def __init__(self, fn: Callable[[Any], Any], *, retryable: bool = True, name: str | None = None):
        self._fn = fn
        self.retryable = retryable
        self.name = name or getattr(fn, "__name__", "transform")

    def apply(self, item: Any) -> Any:
        return self._fn(item)

    def __repr__(self) -> str:
        return f"FunctionTransform({self.name})"


class PassThrough(ItemTransform):
    """Identity transform, used when a step has no processing stage."""

    def apply(self, item: Any) -> Any:
        return item


class CompositeTransform(ItemTransform):
    """Chain of transforms; a drop at any stage drops the item.

    Retryable only when every stage is.
    """

    def __init__(self, *transforms: ItemTransform | Callable[[Any], Any]):
        self.transforms = [as_transform(t) for t in transforms]
        self.retryable = all(t.retryable for t in self.transforms)

    def apply(self, item: Any) -> Any:
        for transform in self.transforms:
            item = transform.apply(item)
            if is_dropped(item):
                return DROPPED
        return item


def as_transform(value: ItemTransform | Callable[[Any], Any] | None) -> ItemTransform:
    """Coerce ``None``, a callable or a transform into an :class:`ItemTransform`."""
    if value is None:
        return PassThrough()
    if isinstance(value, ItemTransform):
        return value
    if callable(value):
        return FunctionTransform(value)
    raise TypeError(f"Not a transform: {value!r}")


__all__ = [
    "DROPPED",
    "is_dropped",
    "ItemTransform",
    "FunctionTransform",
    "PassThrough",
    "CompositeTransform",
    "as_transform",
]
