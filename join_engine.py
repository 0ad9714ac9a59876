from __future__ import annotations

import csv
import dataclasses
import io
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Tuple

from join_config import get_settings

logger = logging.getLogger(__name__)

KeyFn = Callable[[Any], Any]

BUILD_SIDES = ("right", "left", "auto")


class JoinError(Exception):
    """Base error for the join engine."""

class ConstructionError(JoinError):
    pass

class InvalidInputError(JoinError):
    pass

class ParseError(JoinError):
    pass


# A record source holds its records fixed in insertion order. Every record must have the
# same shape: same type for objects, same set of keys for mappings.
@dataclass(frozen=True)
class RecordSource:
    """An ordered, immutable, restartable collection of records of one shape."""
    records: Tuple[Any, ...] = ()
    name: str = "source"

    def __post_init__(self):
        _assert(
            isinstance(self.records, Iterable) and not isinstance(self.records, (str, bytes, Mapping)),
            f"Record source {self.name!r} needs a collection of records, got {type(self.records).__name__}",
            ConstructionError,
        )
        rows = tuple(self.records)
        shapes = []
        for r in rows:
            shape = _shape_of(r)
            if shape not in shapes:
                shapes.append(shape)
        _assert(
            len(shapes) <= 1,
            f"Record source {self.name!r} mixes record shapes: {', '.join(_shape_name(s) for s in shapes)}",
            ConstructionError,
        )
        object.__setattr__(self, "records", rows)

    @classmethod
    def from_records(cls, name: str, records: Iterable[Any]) -> "RecordSource":
        return cls(tuple(records), name)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    def iter_records(self) -> Iterator[Any]:
        return iter(self.records)

    @property
    def shape(self) -> Optional[str]:
        return _shape_name(_shape_of(self.records[0])) if self.records else None

    def to_dicts(self) -> List[Dict[str, Any]]:
        return [_record_to_dict(r) for r in self.records]

    def pretty(self, max_width: int = 24) -> str:
        rows = self.to_dicts()
        return _pretty_table(_columns_of(rows), rows, max_width)


def _shape_of(record: Any):
    if isinstance(record, Mapping):
        return ("mapping", frozenset(record.keys()))
    return type(record)

def _shape_name(shape) -> str:
    if isinstance(shape, tuple):
        return "mapping(" + ", ".join(sorted(map(str, shape[1]))) + ")"
    return shape.__name__

def _record_to_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, Mapping):
        return dict(record)
    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        return {f.name: getattr(record, f.name) for f in dataclasses.fields(record)}
    if hasattr(record, "_asdict"):
        return dict(record._asdict())
    if hasattr(record, "__dict__"):
        return dict(vars(record))
    return {"value": record}

def _columns_of(rows: List[Dict[str, Any]]) -> List[str]:
    cols: List[str] = []
    for row in rows:
        for c in row:
            if c not in cols:
                cols.append(c)
    return cols

def _to_str(x: Any) -> str:
    return x if isinstance(x, str) else str(x)

def _assert(cond: bool, msg: str, err=JoinError):
    if not cond:
        raise err(msg)

def _pretty_table(cols: List[str], rows: List[Dict[str, Any]], max_width: int) -> str:
    data = [cols] + [[_to_str(row.get(c, "")) for c in cols] for row in rows]
    widths = [0] * len(cols)
    for row in data:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))
    widths = [min(w, max_width) for w in widths]

    def fmt(row):
        cells = []
        for i, cell in enumerate(row):
            if len(cell) > widths[i]:
                cell = cell[: max(0, widths[i] - 1)] + "…"
            cells.append(cell.ljust(widths[i]))
        return " | ".join(cells)

    lines = [fmt(data[0]), "-+-".join("-" * w for w in widths)]
    for row in data[1:]:
        lines.append(fmt(row))
    return "\n".join(lines)


########################
# Key extraction
########################

_MISSING = object()

# field_key("user_id") -> record.user_id
# field_key("a", "b")  -> (record.a, record.b)
# Works on attribute-style records and on mappings. An absent or None field is an input error.
def field_key(*names: str) -> KeyFn:
    _assert(names, "field_key: at least one field name is required", ParseError)
    for n in names:
        _assert(isinstance(n, str) and n.strip(), f"field_key: invalid field name {n!r}", ParseError)
    names = tuple(n.strip() for n in names)

    def extract(record: Any) -> Any:
        values = tuple(_get_field(record, n) for n in names)
        return values[0] if len(values) == 1 else values

    extract.__name__ = f"field_key({', '.join(names)})"
    extract.fields = names
    return extract

def _get_field(record: Any, name: str) -> Any:
    if isinstance(record, Mapping):
        value = record.get(name, _MISSING)
    else:
        value = getattr(record, name, _MISSING)
    if value is _MISSING:
        raise InvalidInputError(f"Field {name!r} is absent from record {record!r}")
    if value is None or (isinstance(value, float) and math.isnan(value)):
        raise InvalidInputError(f"Field {name!r} is unset on record {record!r}")
    return value

_ON_SEGMENT_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_\.]*)\s*=\s*([A-Za-z_][A-Za-z0-9_\.]*)\s*$")

# "userIdentifier = userId AND a = b" -> (field_key("userIdentifier", "a"), field_key("userId", "b"))
# Qualified names like "Users.userIdentifier" keep only the last part.
def parse_on(condition: str) -> Tuple[KeyFn, KeyFn]:
    _assert(isinstance(condition, str) and condition.strip(), "Join condition is empty", ParseError)
    pairs: List[Tuple[str, str]] = []
    for p in re.split(r"\s+AND\s+", condition.strip(), flags=re.IGNORECASE):
        if not p.strip():
            continue
        m = _ON_SEGMENT_RE.match(p)
        if not m:
            raise ParseError(f"Invalid join ON segment: {p!r}")
        pairs.append((m.group(1).split(".")[-1], m.group(2).split(".")[-1]))
    _assert(pairs, f"No key pairs found in join condition {condition!r}", ParseError)
    return field_key(*(l for l, _ in pairs)), field_key(*(r for _, r in pairs))


########################
# Equi-join
########################

class JoinedPair(NamedTuple):
    left: Any
    right: Any

    def __str__(self):
        return f"({self.left},{self.right})"


# Hash join with a fixed output order: pairs follow the left source's order, and within one
# left record the matched right records keep their original relative order.
# 1. Extract every key on both sides up front, so a bad record fails the join before any
#    pair is delivered.
# 2. Index the build side: key -> list of records (duplicates kept).
# 3. Probe with the other side.
#    - build right: scan left in order and emit each bucket as is.
#    - build left: collect (left position, right position) ranks and sort them, which gives
#      the same order as building right.
class EquiJoin:
    def __init__(self, left: Any, right: Any, left_key: KeyFn, right_key: KeyFn,
                 build_side: Optional[str] = None):
        self.left = _as_source(left, "left")
        self.right = _as_source(right, "right")
        _assert(callable(left_key), "left_key must be callable", ParseError)
        _assert(callable(right_key), "right_key must be callable", ParseError)
        self.left_key = left_key
        self.right_key = right_key
        if build_side is None:
            build_side = get_settings().build_side
        _assert(build_side in BUILD_SIDES, f"Unknown build side {build_side!r}, expected one of {BUILD_SIDES}", ParseError)
        self.build_side = build_side

    def resolved_build_side(self) -> str:
        if self.build_side == "auto":
            return "left" if len(self.left) <= len(self.right) else "right"
        return self.build_side

    def __iter__(self) -> Iterator[JoinedPair]:
        if not self.left or not self.right:
            return iter(())
        left_keys = _extract_keys(self.left, self.left_key, "left")
        right_keys = _extract_keys(self.right, self.right_key, "right")
        if self.resolved_build_side() == "left":
            return self._build_left(left_keys, right_keys)
        return self._build_right(left_keys, right_keys)

    def _build_right(self, left_keys: List[Any], right_keys: List[Any]) -> Iterator[JoinedPair]:
        hash_table: Dict[Any, List[Any]] = {}
        for key, rrow in zip(right_keys, self.right):
            hash_table.setdefault(key, []).append(rrow)
        logger.debug(
            "Indexed %d keys from %r (build side: right)", len(hash_table), self.right.name,
            extra={"build_side": "right"},
        )

        for key, lrow in zip(left_keys, self.left):
            for rrow in hash_table.get(key, ()):
                yield JoinedPair(lrow, rrow)

    def _build_left(self, left_keys: List[Any], right_keys: List[Any]) -> Iterator[JoinedPair]:
        hash_table: Dict[Any, List[int]] = {}
        for pos, key in enumerate(left_keys):
            hash_table.setdefault(key, []).append(pos)
        logger.debug(
            "Indexed %d keys from %r (build side: left)", len(hash_table), self.left.name,
            extra={"build_side": "left"},
        )

        ranks: List[Tuple[int, int]] = []
        for rpos, key in enumerate(right_keys):
            for lpos in hash_table.get(key, ()):
                ranks.append((lpos, rpos))
        ranks.sort()
        for lpos, rpos in ranks:
            yield JoinedPair(self.left.records[lpos], self.right.records[rpos])

    def collect(self) -> List[JoinedPair]:
        pairs = list(self)
        logger.info(
            "Joined %r with %r: %d pairs",
            self.left.name, self.right.name, len(pairs),
            extra={"left_source": self.left.name, "right_source": self.right.name, "pairs": len(pairs)},
        )
        return pairs


def _as_source(src: Any, side: str) -> RecordSource:
    if isinstance(src, RecordSource):
        return src
    return RecordSource(src, side)

def _extract_keys(source: RecordSource, key_fn: KeyFn, side: str) -> List[Any]:
    keys = []
    for pos, record in enumerate(source):
        try:
            key = key_fn(record)
        except InvalidInputError as e:
            raise InvalidInputError(f"Cannot extract {side} key for record #{pos} of {source.name!r}: {e}") from e
        except Exception as e:
            raise InvalidInputError(
                f"Cannot extract {side} key for record #{pos} of {source.name!r} ({record!r}): {e!r}"
            ) from e
        try:
            hash(key)
        except TypeError as e:
            raise InvalidInputError(
                f"Unhashable {side} key {key!r} for record #{pos} of {source.name!r}"
            ) from e
        _assert(
            not _has_nan(key),
            f"Unset (NaN) {side} key {key!r} for record #{pos} of {source.name!r}",
            InvalidInputError,
        )
        keys.append(key)
    return keys

# NaN never equals itself, but a dict lookup would still match the same NaN object.
def _has_nan(key: Any) -> bool:
    if isinstance(key, tuple):
        return any(_has_nan(k) for k in key)
    return key != key


#############################
# Runner utilities (public)
#############################

def iter_join(left: Any, right: Any, left_key: KeyFn, right_key: KeyFn,
              build_side: Optional[str] = None) -> Iterator[JoinedPair]:
    return iter(EquiJoin(left, right, left_key, right_key, build_side))

def join(left: Any, right: Any, left_key: KeyFn, right_key: KeyFn,
         build_side: Optional[str] = None) -> List[JoinedPair]:
    return EquiJoin(left, right, left_key, right_key, build_side).collect()

def join_on(left: Any, right: Any, on: str, build_side: Optional[str] = None) -> List[JoinedPair]:
    left_key, right_key = parse_on(on)
    return join(left, right, left_key, right_key, build_side)

def collect_into(pairs: Iterable[JoinedPair], sink: List[JoinedPair]) -> List[JoinedPair]:
    sink.extend(pairs)
    return sink

# (User(1, "Peter"), EMail(1, ...)) -> {"left.user_identifier": 1, "left.name": "Peter", "right.user_id": 1, ...}
def pairs_to_dicts(pairs: Iterable[JoinedPair], left_prefix: str = "left",
                   right_prefix: str = "right") -> List[Dict[str, Any]]:
    rows = []
    for pair in pairs:
        row = {f"{left_prefix}.{k}": v for k, v in _record_to_dict(pair.left).items()}
        row.update({f"{right_prefix}.{k}": v for k, v in _record_to_dict(pair.right).items()})
        rows.append(row)
    return rows

def pairs_to_csv(pairs: Iterable[JoinedPair], left_prefix: str = "left", right_prefix: str = "right",
                 delimiter: str = ",") -> str:
    rows = pairs_to_dicts(pairs, left_prefix, right_prefix)
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=_columns_of(rows), delimiter=delimiter, lineterminator="\n")
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue().rstrip("\n")

def pairs_pretty(pairs: Iterable[JoinedPair], left_prefix: str = "left", right_prefix: str = "right",
                 max_width: int = 24) -> str:
    rows = pairs_to_dicts(pairs, left_prefix, right_prefix)
    return _pretty_table(_columns_of(rows), rows, max_width)
