"""
Data carried through a segmented scan.

Every value here is immutable: a ScanRequest is built fresh for each page,
a ScanResponse is consumed once, and cursors are plain values a caller may
persist. Keys and items stay in the low-level AttributeValue shape
({"pk": {"S": "..."}}) the boto3 client speaks.
"""

import base64
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Generic, List, Mapping, Optional, TypeVar

Key = Dict[str, Dict[str, Any]]
U = TypeVar("U")


@dataclass(frozen=True)
class Expression:
    """Server-evaluated filter predicate with its placeholder maps."""
    expression: str
    attribute_names: Mapping[str, str] = field(default_factory=dict)
    attribute_values: Mapping[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.expression

    def merge(self, other: "Expression", logic: str = "AND") -> "Expression":
        if self.is_empty:
            return other
        if other.is_empty:
            return self
        for attr in ("attribute_names", "attribute_values"):
            mine, theirs = getattr(self, attr), getattr(other, attr)
            clash = [k for k in mine if k in theirs and mine[k] != theirs[k]]
            if clash:
                raise ValueError(f"conflicting placeholders: {', '.join(sorted(clash))}")
        return Expression(
            expression=f"({self.expression}) {logic} ({other.expression})",
            attribute_names={**self.attribute_names, **other.attribute_names},
            attribute_values={**self.attribute_values, **other.attribute_values},
        )


@dataclass(frozen=True)
class ScanOptions:
    """Per-page request settings that are the same for every segment."""
    index_name: Optional[str] = None
    limit: Optional[int] = None
    projection_expression: Optional[str] = None
    projection_names: Mapping[str, str] = field(default_factory=dict)
    return_consumed_capacity: Optional[str] = None


@dataclass(frozen=True)
class ScanRequest:
    table_name: str
    total_segments: int
    segment: int
    consistent_read: bool = False
    predicate: Optional[Expression] = None
    exclusive_start_key: Optional[Key] = None
    options: ScanOptions = field(default_factory=ScanOptions)

    def next_page(self, start_key: Key) -> "ScanRequest":
        """Same table, segment and predicate, resuming after start_key."""
        return replace(self, exclusive_start_key=start_key)

    def to_kwargs(self) -> Dict[str, Any]:
        """Render as the argument dict for boto3's low-level client.scan()."""
        kwargs: Dict[str, Any] = {
            "TableName": self.table_name,
            "Segment": self.segment,
            "TotalSegments": self.total_segments,
            "ConsistentRead": bool(self.consistent_read),
        }
        names: Dict[str, str] = {}
        if self.predicate is not None:
            kwargs["FilterExpression"] = self.predicate.expression
            names.update(self.predicate.attribute_names)
            if self.predicate.attribute_values:
                kwargs["ExpressionAttributeValues"] = dict(self.predicate.attribute_values)
        opts = self.options
        if opts.index_name:
            kwargs["IndexName"] = opts.index_name
        if opts.limit:
            kwargs["Limit"] = opts.limit
        if opts.projection_expression:
            kwargs["ProjectionExpression"] = opts.projection_expression
            names.update(opts.projection_names)
        if opts.return_consumed_capacity:
            kwargs["ReturnConsumedCapacity"] = opts.return_consumed_capacity
        if names:
            kwargs["ExpressionAttributeNames"] = names
        if self.exclusive_start_key:
            kwargs["ExclusiveStartKey"] = dict(self.exclusive_start_key)
        return kwargs


@dataclass(frozen=True)
class ScanResponse:
    """
    One page of a segment.

    start_key is the exclusive start key the page was requested with and
    skipped counts leading items dropped when a segment resumes mid-page;
    both are stamped by the scanner, not by the store.
    """
    items: List[Dict[str, Any]]
    last_evaluated_key: Optional[Key] = None
    count: int = 0
    scanned_count: int = 0
    consumed_capacity: Optional[Dict[str, Any]] = None
    start_key: Optional[Key] = None
    skipped: int = 0

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any]) -> "ScanResponse":
        items = list(raw.get("Items") or [])
        return cls(
            items=items,
            last_evaluated_key=raw.get("LastEvaluatedKey") or None,
            count=int(raw.get("Count", len(items))),
            scanned_count=int(raw.get("ScannedCount", 0)),
            consumed_capacity=raw.get("ConsumedCapacity"),
        )

    @property
    def is_terminal(self) -> bool:
        return not self.last_evaluated_key


@dataclass(frozen=True)
class SegmentPassThrough(Generic[U]):
    """A request or response tagged with the segment that owns it."""
    payload: U
    segment: int


@dataclass(frozen=True)
class ResumePoint:
    exclusive_start_key: Optional[Key] = None
    skip: int = 0
    exhausted: bool = False


@dataclass(frozen=True)
class PageCursor:
    """Where a record sits in its segment: the page it came from and its offset."""
    segment: int
    total_segments: int
    exclusive_start_key: Optional[Key]
    last_evaluated_key: Optional[Key]
    position: int
    page_size: int

    @property
    def resume_point(self) -> ResumePoint:
        """Start point for a later scan that continues right after this record."""
        if self.position + 1 < self.page_size:
            return ResumePoint(self.exclusive_start_key, skip=self.position + 1)
        if not self.last_evaluated_key:
            return ResumePoint(exhausted=True)
        return ResumePoint(self.last_evaluated_key)


def _encode_key(key: Optional[Key]) -> Optional[Dict[str, Any]]:
    if key is None:
        return None
    out: Dict[str, Any] = {}
    for name, av in key.items():
        if "B" in av:
            raw = av["B"]
            out[name] = {"B": base64.b64encode(bytes(raw)).decode("ascii")}
        else:
            out[name] = dict(av)
    return out


def _decode_key(data: Optional[Mapping[str, Any]]) -> Optional[Key]:
    if data is None:
        return None
    out: Key = {}
    for name, av in data.items():
        if "B" in av:
            out[name] = {"B": base64.b64decode(av["B"])}
        else:
            out[name] = dict(av)
    return out


class ScanCheckpoint:
    """
    Resume map for a segmented scan, one entry per segment.

    Hand it to ParallelScanner.scan_resumable and it is kept current as
    records are consumed and empty pages pass; cursors can also be folded
    in by hand with observe(). Segments never observed restart from the
    beginning.
    """

    def __init__(self, total_segments: int, points: Optional[Mapping[int, ResumePoint]] = None):
        if total_segments < 1:
            raise ValueError("total_segments must be >= 1")
        self.total_segments = total_segments
        self._points: Dict[int, ResumePoint] = {}
        for seg, point in (points or {}).items():
            self._check_segment(seg)
            self._points[int(seg)] = point

    def _check_segment(self, segment: int) -> None:
        if not 0 <= int(segment) < self.total_segments:
            raise ValueError(f"segment {segment} outside [0, {self.total_segments})")

    def observe(self, cursor: PageCursor) -> None:
        if cursor.total_segments != self.total_segments:
            raise ValueError(
                f"cursor from a {cursor.total_segments}-segment scan "
                f"cannot update a {self.total_segments}-segment checkpoint"
            )
        self._check_segment(cursor.segment)
        self._points[cursor.segment] = cursor.resume_point

    def advance(self, segment: int, last_evaluated_key: Optional[Key]) -> None:
        """Move a segment past a page with nothing left to consume."""
        self._check_segment(segment)
        if last_evaluated_key:
            self._points[segment] = ResumePoint(last_evaluated_key)
        else:
            self._points[segment] = ResumePoint(exhausted=True)

    def resume_point(self, segment: int) -> ResumePoint:
        self._check_segment(segment)
        return self._points.get(segment, ResumePoint())

    @property
    def is_complete(self) -> bool:
        return all(self.resume_point(s).exhausted for s in range(self.total_segments))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_segments": self.total_segments,
            "segments": {
                str(seg): {
                    "exclusive_start_key": _encode_key(p.exclusive_start_key),
                    "skip": p.skip,
                    "exhausted": p.exhausted,
                }
                for seg, p in sorted(self._points.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScanCheckpoint":
        points = {
            int(seg): ResumePoint(
                exclusive_start_key=_decode_key(p.get("exclusive_start_key")),
                skip=int(p.get("skip", 0)),
                exhausted=bool(p.get("exhausted", False)),
            )
            for seg, p in (data.get("segments") or {}).items()
        }
        return cls(int(data["total_segments"]), points)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> "ScanCheckpoint":
        return cls.from_dict(json.loads(text))

    def __repr__(self):
        done = sum(1 for p in self._points.values() if p.exhausted)
        return f"<ScanCheckpoint segments={self.total_segments} tracked={len(self._points)} exhausted={done}>"
