"""Job parameters — typed, immutable run identity.

Manifesto:
    A job instance *is* its parameter set.  Two launches with equal
    parameters are the same logical run, so parameters are immutable,
    typed (``"7000"`` and ``7000`` are different runs) and serialized
    canonically before being hashed into the instance key.

ARCHITECTURE
────────────
::

    JobParametersBuilder()
      .add_string("startDate", "2025-01-01")
      .add_long("minAmount", 7000)
      .add_long("run.timestamp", 1736..., identifying=True)
      .to_job_parameters()          ─► JobParameters (Mapping[str, value])
                                         ├── .instance_key(job_name)
                                         ├── .identifying()
                                         └── .to_json() / from_json()

    JobParametersValidator           ─ required/optional ParamDef checks
    RunIdIncrementer                 ─ next "run.id" for a fresh instance

Tags:
    batch, parameters, job-instance, validation, idempotency

Doc-Types:
    api-reference
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from batchspine.core.errors import InvalidJobParametersError
from batchspine.core.hashing import canonical_json, compute_hash


class ParameterType(str, Enum):
    """Value kinds a job parameter may carry."""

    STRING = "STRING"
    LONG = "LONG"
    DATE = "DATE"
    DOUBLE = "DOUBLE"


def _infer_type(value: Any) -> ParameterType:
    # bool is an int subclass; refuse it rather than store True as LONG 1
    if isinstance(value, bool):
        raise TypeError("Boolean job parameters are not supported; use a STRING")
    if isinstance(value, int):
        return ParameterType.LONG
    if isinstance(value, float):
        return ParameterType.DOUBLE
    if isinstance(value, (date, datetime)):
        return ParameterType.DATE
    if isinstance(value, str):
        return ParameterType.STRING
    raise TypeError(f"Unsupported job parameter type: {type(value).__name__}")


def _serialize(value: Any, kind: ParameterType) -> str:
    if kind == ParameterType.DATE:
        return value.isoformat()
    if kind == ParameterType.DOUBLE:
        return repr(float(value))
    return str(value)


def _deserialize(raw: str, kind: ParameterType) -> Any:
    if kind == ParameterType.LONG:
        return int(raw)
    if kind == ParameterType.DOUBLE:
        return float(raw)
    if kind == ParameterType.DATE:
        return datetime.fromisoformat(raw) if "T" in raw else date.fromisoformat(raw)
    return raw


@dataclass(frozen=True)
class JobParameter:
    """A single typed parameter value.

    Attributes:
        value: The Python value (str, int, float, date or datetime)
        type: Declared kind; must match ``value``
        identifying: Whether the parameter contributes to instance identity
    """

    value: Any
    type: ParameterType
    identifying: bool = True

    def __post_init__(self) -> None:
        if self.value is None:
            raise TypeError("Job parameter values cannot be None")
        actual = _infer_type(self.value)
        if actual != self.type and not (self.type == ParameterType.DOUBLE and actual == ParameterType.LONG):
            raise TypeError(
                f"Parameter declared {self.type.value} but value {self.value!r} is {actual.value}"
            )
        if self.type == ParameterType.DOUBLE:
            object.__setattr__(self, "value", float(self.value))

    @classmethod
    def of(cls, value: Any, identifying: bool = True) -> JobParameter:
        """Create a parameter, inferring its type from the value."""
        return cls(value=value, type=_infer_type(value), identifying=identifying)

    def canonical(self) -> str:
        return f"{self.type.value}:{_serialize(self.value, self.type)}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": _serialize(self.value, self.type),
            "type": self.type.value,
            "identifying": self.identifying,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JobParameter:
        kind = ParameterType(data["type"])
        return cls(
            value=_deserialize(data["value"], kind),
            type=kind,
            identifying=data.get("identifying", True),
        )


class JobParameters(Mapping[str, Any]):
    """Immutable mapping of parameter name to typed value.

    Indexing returns the plain value; :meth:`get_parameter` returns the
    :class:`JobParameter` with its type and identifying flag.  Equality
    compares names, values, types and identifying flags.

    Example:
        >>> params = JobParameters.from_dict({"minAmount": 7000, "mode": "FAST"})
        >>> params["minAmount"]
        7000
        >>> params.get_parameter("minAmount").type
        <ParameterType.LONG: 'LONG'>
    """

    __slots__ = ("_params",)

    def __init__(self, parameters: Mapping[str, JobParameter] | None = None):
        params = dict(parameters or {})
        for name, param in params.items():
            if not isinstance(param, JobParameter):
                raise TypeError(f"Parameter {name!r} must be a JobParameter, got {type(param).__name__}")
        self._params: dict[str, JobParameter] = dict(sorted(params.items()))

    # ── Mapping protocol ─────────────────────────────────────────

    def __getitem__(self, name: str) -> Any:
        return self._params[name].value

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, JobParameters):
            return NotImplemented
        return self._params == other._params

    def __hash__(self) -> int:
        return hash(frozenset(self._params.items()))

    def __repr__(self) -> str:
        inner = ", ".join(f"{k}={p.value!r}" for k, p in self._params.items())
        return f"JobParameters({inner})"

    # ── Typed access ─────────────────────────────────────────────

    def get_parameter(self, name: str) -> JobParameter:
        return self._params[name]

    def parameters(self) -> dict[str, JobParameter]:
        return dict(self._params)

    def get_string(self, name: str, default: str | None = None) -> str | None:
        return self._typed(name, ParameterType.STRING, default)

    def get_long(self, name: str, default: int | None = None) -> int | None:
        return self._typed(name, ParameterType.LONG, default)

    def get_double(self, name: str, default: float | None = None) -> float | None:
        return self._typed(name, ParameterType.DOUBLE, default)

    def get_date(self, name: str, default: date | None = None) -> date | None:
        return self._typed(name, ParameterType.DATE, default)

    def _typed(self, name: str, kind: ParameterType, default: Any) -> Any:
        param = self._params.get(name)
        if param is None:
            return default
        if param.type != kind:
            raise TypeError(f"Parameter {name!r} is {param.type.value}, not {kind.value}")
        return param.value

    # ── Identity ─────────────────────────────────────────────────

    def identifying(self) -> JobParameters:
        """Subset of parameters that define the job instance."""
        return JobParameters({k: p for k, p in self._params.items() if p.identifying})

    def instance_key(self, job_name: str) -> str:
        """Deterministic identity of (job name, identifying parameters)."""
        canonical = canonical_json({k: p.canonical() for k, p in self.identifying()._params.items()})
        return compute_hash(job_name, canonical, length=64)

    def merged(self, other: Mapping[str, JobParameter] | JobParameters) -> JobParameters:
        """New parameters with ``other`` overriding entries of ``self``."""
        extra = other.parameters() if isinstance(other, JobParameters) else dict(other)
        return JobParameters({**self._params, **extra})

    # ── Serialization ────────────────────────────────────────────

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {name: param.to_dict() for name, param in self._params.items()}

    def to_plain(self) -> dict[str, str]:
        """Name → serialized value, for reports and log lines."""
        return {name: _serialize(p.value, p.type) for name, p in self._params.items()}

    def to_json(self) -> str:
        return canonical_json(self.to_dict())

    @classmethod
    def from_json(cls, raw: str | None) -> JobParameters:
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls({name: JobParameter.from_dict(item) for name, item in data.items()})

    @classmethod
    def from_dict(cls, values: Mapping[str, Any], identifying: bool = True) -> JobParameters:
        """Build from plain values, inferring each parameter's type."""
        params: dict[str, JobParameter] = {}
        for name, value in values.items():
            params[name] = value if isinstance(value, JobParameter) else JobParameter.of(value, identifying)
        return cls(params)


EMPTY_PARAMETERS = JobParameters()


class JobParametersBuilder:
    """Fluent builder for :class:`JobParameters`.

    Example:
        >>> params = (
        ...     JobParametersBuilder()
        ...     .add_string("startDate", "2025-01-01")
        ...     .add_long("timestamp", 1736000000000)
        ...     .to_job_parameters()
        ... )
    """

    def __init__(self, initial: JobParameters | None = None):
        self._params: dict[str, JobParameter] = initial.parameters() if initial else {}

    def add_string(self, name: str, value: str, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, JobParameter(str(value), ParameterType.STRING, identifying))

    def add_long(self, name: str, value: int, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, JobParameter(int(value), ParameterType.LONG, identifying))

    def add_double(self, name: str, value: float, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, JobParameter(float(value), ParameterType.DOUBLE, identifying))

    def add_date(self, name: str, value: date | datetime, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, JobParameter(value, ParameterType.DATE, identifying))

    def add(self, name: str, value: Any, identifying: bool = True) -> JobParametersBuilder:
        return self._add(name, JobParameter.of(value, identifying))

    def add_all(self, values: Mapping[str, Any]) -> JobParametersBuilder:
        for name, value in values.items():
            if isinstance(value, JobParameter):
                self._add(name, value)
            else:
                self.add(name, value)
        return self

    def _add(self, name: str, param: JobParameter) -> JobParametersBuilder:
        if not name:
            raise ValueError("Parameter name must be non-empty")
        self._params[name] = param
        return self

    def to_job_parameters(self) -> JobParameters:
        return JobParameters(self._params)


# =============================================================================
# Validation
# =============================================================================


@dataclass
class ParamDef:
    """Definition of a job parameter."""

    name: str
    type: ParameterType
    description: str = ""
    required: bool = True
    validator: Callable[[Any], bool] | None = None
    error_message: str | None = None

    def validate(self, param: JobParameter) -> str | None:
        """Return an error message, or None when the parameter is valid."""
        if param.type != self.type:
            return f"Expected {self.type.value}, got {param.type.value}"
        if self.validator is not None:
            try:
                if not self.validator(param.value):
                    return self.error_message or f"Validation failed for {self.name}"
            except (TypeError, ValueError) as e:
                return str(e)
        return None


@dataclass
class JobParametersValidator:
    """Checks required and optional parameters before a run is created.

    Example:
        >>> validator = JobParametersValidator(required=[
        ...     ParamDef("startDate", ParameterType.STRING, validator=date_format),
        ... ])
        >>> validator.validate(params)  # raises InvalidJobParametersError
    """

    required: list[ParamDef] = field(default_factory=list)
    optional: list[ParamDef] = field(default_factory=list)

    def __post_init__(self) -> None:
        for param in self.required:
            param.required = True
        for param in self.optional:
            param.required = False

    def validate(self, params: JobParameters) -> None:
        missing: list[str] = []
        invalid: dict[str, str] = {}

        for definition in self.required:
            if definition.name not in params:
                missing.append(definition.name)
                continue
            error = definition.validate(params.get_parameter(definition.name))
            if error:
                invalid[definition.name] = error

        for definition in self.optional:
            if definition.name in params:
                error = definition.validate(params.get_parameter(definition.name))
                if error:
                    invalid[definition.name] = error

        if missing or invalid:
            messages = []
            if missing:
                messages.append(f"Missing required parameters: {', '.join(missing)}")
            for name, error in invalid.items():
                messages.append(f"Invalid parameter '{name}': {error}")
            raise InvalidJobParametersError(
                ". ".join(messages),
                missing_params=missing,
                invalid_params=invalid,
            )


def date_format(value: str | date) -> bool:
    """Validate ISO date format (YYYY-MM-DD)."""
    if isinstance(value, date):
        return True
    try:
        date.fromisoformat(value)
        return True
    except (ValueError, TypeError):
        return False


def positive_number(value: int | float) -> bool:
    return value > 0


def one_of(*choices: str) -> Callable[[str], bool]:
    """Create a validator accepting only the given (case-insensitive) values."""
    allowed = {c.upper() for c in choices}

    def validator(value: str) -> bool:
        return str(value).upper() in allowed

    return validator


# =============================================================================
# Incrementer
# =============================================================================


class RunIdIncrementer:
    """Produces the next parameter set for a fresh job instance.

    The ``run.id`` LONG parameter is set one higher than in ``previous``
    (or 1 when there is no previous instance); all other previous values
    are carried over unless ``base`` overrides them.
    """

    def __init__(self, key: str = "run.id"):
        self.key = key

    def get_next(self, previous: JobParameters | None, base: JobParameters | None = None) -> JobParameters:
        last = previous.get_long(self.key, 0) if previous is not None else 0
        builder = JobParametersBuilder(previous or EMPTY_PARAMETERS)
        if base is not None:
            builder.add_all(base.parameters())
        return builder.add_long(self.key, (last or 0) + 1).to_job_parameters()


__all__ = [
    "ParameterType",
    "JobParameter",
    "JobParameters",
    "EMPTY_PARAMETERS",
    "JobParametersBuilder",
    "ParamDef",
    "JobParametersValidator",
    "RunIdIncrementer",
    "date_format",
    "positive_number",
    "one_of",
]
