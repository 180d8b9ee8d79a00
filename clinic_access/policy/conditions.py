"""Typed condition expressions for data access rules.

Rule conditions are JSON objects discriminated by ``op``. They are parsed and
type-checked when a rule is written, and interpreted directly by the rule
evaluator. Evaluation is three-valued: ``True``, ``False`` or ``None`` for
unknown (a missing attribute, or an attribute whose lookup timed out).
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Any, Annotated, FrozenSet, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from clinic_access.core.errors import ValidationError

MAX_CONDITION_DEPTH = 16

AttributePath = Annotated[
    str,
    StringConstraints(pattern=r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)*$", max_length=200),
]
Scalar = Union[bool, int, float, str, None]


class _Marker:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


UNKNOWN = _Marker("UNKNOWN")
"""Attribute value placed in the bag when an external lookup timed out or failed."""

_MISSING = _Marker("MISSING")


def resolve_attribute(attributes: Mapping[str, Any], path: str) -> Any:
    """Look up ``path`` as a flat key first, then by walking nested mappings."""

    if path in attributes:
        return attributes[path]
    current: Any = attributes
    for part in path.split("."):
        if not isinstance(current, Mapping) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _is_unknown(value: Any) -> bool:
    return value is _MISSING or value is UNKNOWN


def _same(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) or isinstance(expected, bool):
        return actual is expected
    if isinstance(actual, (int, float)) and isinstance(expected, (int, float)):
        return actual == expected
    return str(actual) == str(expected)


def _as_time(value: Any) -> Optional[time]:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).time()
        except ValueError:
            pass
        try:
            return time.fromisoformat(value)
        except ValueError:
            return None
    return None


class _Condition(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        raise NotImplementedError

    def attributes(self) -> FrozenSet[str]:
        """Attribute paths this expression reads."""

        raise NotImplementedError


class Equals(_Condition):
    op: Literal["equals"] = "equals"
    attribute: AttributePath
    value: Scalar

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        actual = resolve_attribute(attributes, self.attribute)
        if _is_unknown(actual):
            return None
        return _same(actual, self.value)

    def attributes(self) -> FrozenSet[str]:
        return frozenset({self.attribute})


class InSet(_Condition):
    op: Literal["in_set"] = "in_set"
    attribute: AttributePath
    values: Tuple[Scalar, ...] = Field(..., min_length=1)

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        actual = resolve_attribute(attributes, self.attribute)
        if _is_unknown(actual):
            return None
        return any(_same(actual, candidate) for candidate in self.values)

    def attributes(self) -> FrozenSet[str]:
        return frozenset({self.attribute})


class BranchMatches(_Condition):
    """True when the requester and the target record belong to the same branch."""

    op: Literal["branch_matches"] = "branch_matches"
    left: AttributePath = "requester.branch_id"
    right: AttributePath = "patient.branch_id"

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        left = resolve_attribute(attributes, self.left)
        right = resolve_attribute(attributes, self.right)
        if _is_unknown(left) or _is_unknown(right) or left is None or right is None:
            return None
        return _same(left, right)

    def attributes(self) -> FrozenSet[str]:
        return frozenset({self.left, self.right})


class TimeWithin(_Condition):
    """True when the time-of-day attribute lies in ``[start, end)``; wraps past midnight."""

    op: Literal["time_within"] = "time_within"
    attribute: AttributePath = "request.time"
    start: time
    end: time

    @model_validator(mode="after")
    def _reject_empty_window(self) -> "TimeWithin":
        if self.start == self.end:
            raise ValueError("time window start and end must differ")
        return self

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        raw = resolve_attribute(attributes, self.attribute)
        if _is_unknown(raw):
            return None
        moment = _as_time(raw)
        if moment is None:
            return None
        moment = moment.replace(tzinfo=None)
        if self.start < self.end:
            return self.start <= moment < self.end
        return moment >= self.start or moment < self.end

    def attributes(self) -> FrozenSet[str]:
        return frozenset({self.attribute})


class And(_Condition):
    """Kleene conjunction; an empty list is vacuously true."""

    op: Literal["and"] = "and"
    conditions: Tuple["Condition", ...] = ()

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        outcome: Optional[bool] = True
        for condition in self.conditions:
            result = condition.evaluate(attributes)
            if result is False:
                return False
            if result is None:
                outcome = None
        return outcome

    def attributes(self) -> FrozenSet[str]:
        return frozenset().union(*(condition.attributes() for condition in self.conditions))


class Or(_Condition):
    op: Literal["or"] = "or"
    conditions: Tuple["Condition", ...] = Field(..., min_length=1)

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        outcome: Optional[bool] = False
        for condition in self.conditions:
            result = condition.evaluate(attributes)
            if result is True:
                return True
            if result is None:
                outcome = None
        return outcome

    def attributes(self) -> FrozenSet[str]:
        return frozenset().union(*(condition.attributes() for condition in self.conditions))


class Not(_Condition):
    op: Literal["not"] = "not"
    condition: "Condition"

    def evaluate(self, attributes: Mapping[str, Any]) -> Optional[bool]:
        result = self.condition.evaluate(attributes)
        return None if result is None else not result

    def attributes(self) -> FrozenSet[str]:
        return self.condition.attributes()


Condition = Annotated[
    Union[Equals, InSet, BranchMatches, TimeWithin, And, Or, Not],
    Field(discriminator="op"),
]

And.model_rebuild()
Or.model_rebuild()
Not.model_rebuild()

_CONDITION_ADAPTER: TypeAdapter[Condition] = TypeAdapter(Condition)


def _depth(condition: _Condition) -> int:
    if isinstance(condition, (And, Or)):
        return 1 + max((_depth(child) for child in condition.conditions), default=0)
    if isinstance(condition, Not):
        return 1 + _depth(condition.condition)
    return 1


def parse_condition(raw: Any) -> Condition:
    """Parse and type-check a JSON condition, raising ``ValidationError`` when malformed."""

    if isinstance(raw, _Condition):
        condition = raw
    else:
        try:
            condition = _CONDITION_ADAPTER.validate_python(raw)
        except PydanticValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'condition'}: {error['msg']}"
                for error in exc.errors()
            )
            raise ValidationError(f"Invalid rule condition: {errors}") from exc
    if _depth(condition) > MAX_CONDITION_DEPTH:
        raise ValidationError(f"Rule condition nesting exceeds {MAX_CONDITION_DEPTH} levels")
    return condition


def condition_to_dict(condition: Condition) -> dict[str, Any]:
    """Serialize a condition back to its JSON form for storage."""

    return condition.model_dump(mode="json")
