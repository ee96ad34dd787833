"""Tests for job parameters: typing, identity, validation and incrementing."""

from __future__ import annotations

from datetime import date

import pytest

from batchspine.core.errors import InvalidJobParametersError
from batchspine.execution.parameters import (
    EMPTY_PARAMETERS,
    JobParameter,
    JobParameters,
    JobParametersBuilder,
    JobParametersValidator,
    ParamDef,
    ParameterType,
    RunIdIncrementer,
    date_format,
    one_of,
    positive_number,
)


class TestJobParameter:
    def test_type_inference(self):
        assert JobParameter.of("x").type == ParameterType.STRING
        assert JobParameter.of(7).type == ParameterType.LONG
        assert JobParameter.of(1.5).type == ParameterType.DOUBLE
        assert JobParameter.of(date(2025, 1, 1)).type == ParameterType.DATE

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            JobParameter.of(True)

    def test_none_rejected(self):
        with pytest.raises(TypeError):
            JobParameter(None, ParameterType.STRING)

    def test_declared_type_must_match(self):
        with pytest.raises(TypeError):
            JobParameter("7000", ParameterType.LONG)

    def test_long_value_accepted_as_double(self):
        param = JobParameter(3, ParameterType.DOUBLE)
        assert param.value == 3.0
        assert isinstance(param.value, float)

    def test_dict_form_restores_value(self):
        param = JobParameter(date(2025, 3, 9), ParameterType.DATE, identifying=False)
        restored = JobParameter.from_dict(param.to_dict())
        assert restored == param


class TestJobParameters:
    def test_indexing_returns_plain_values(self):
        params = JobParameters.from_dict({"minAmount": "7000", "run.id": 3})
        assert params["minAmount"] == "7000"
        assert params["run.id"] == 3
        assert set(params) == {"minAmount", "run.id"}

    def test_typed_getters(self):
        params = JobParameters.from_dict({"name": "x", "n": 2, "ratio": 0.5, "day": date(2025, 1, 2)})
        assert params.get_string("name") == "x"
        assert params.get_long("n") == 2
        assert params.get_double("ratio") == 0.5
        assert params.get_date("day") == date(2025, 1, 2)
        assert params.get_string("missing", "fallback") == "fallback"

    def test_typed_getter_rejects_wrong_type(self):
        params = JobParameters.from_dict({"n": 2})
        with pytest.raises(TypeError):
            params.get_string("n")

    def test_equality_includes_types(self):
        assert JobParameters.from_dict({"a": "1"}) != JobParameters.from_dict({"a": 1})
        assert JobParameters.from_dict({"a": 1}) == JobParameters.from_dict({"a": 1})

    def test_instance_key_ignores_order_and_non_identifying(self):
        first = (
            JobParametersBuilder()
            .add_string("startDate", "2025-01-01")
            .add_string("endDate", "2025-01-07")
            .add_long("attempt", 1, identifying=False)
            .to_job_parameters()
        )
        second = (
            JobParametersBuilder()
            .add_string("endDate", "2025-01-07")
            .add_string("startDate", "2025-01-01")
            .add_long("attempt", 2, identifying=False)
            .to_job_parameters()
        )
        assert first.instance_key("parameterJob") == second.instance_key("parameterJob")

    def test_instance_key_depends_on_job_name_and_type(self):
        params = JobParameters.from_dict({"a": "1"})
        assert params.instance_key("jobA") != params.instance_key("jobB")
        assert params.instance_key("jobA") != JobParameters.from_dict({"a": 1}).instance_key("jobA")

    def test_json_roundtrip(self):
        params = (
            JobParametersBuilder()
            .add_string("mode", "FAST")
            .add_date("day", date(2025, 5, 1))
            .add_double("rate", 2.5, identifying=False)
            .to_job_parameters()
        )
        assert JobParameters.from_json(params.to_json()) == params

    def test_merged_overrides(self):
        params = JobParameters.from_dict({"a": "1", "b": "2"})
        merged = params.merged({"b": JobParameter.of("3")})
        assert merged["b"] == "3"
        assert params["b"] == "2"

    def test_empty(self):
        assert len(EMPTY_PARAMETERS) == 0
        assert EMPTY_PARAMETERS.to_plain() == {}


class TestValidator:
    @pytest.fixture()
    def validator(self):
        return JobParametersValidator(
            required=[ParamDef("startDate", ParameterType.STRING, validator=date_format)],
            optional=[ParamDef("mode", ParameterType.STRING, validator=one_of("FAST", "NORMAL"))],
        )

    def test_valid(self, validator):
        validator.validate(JobParameters.from_dict({"startDate": "2025-01-01", "mode": "fast"}))

    def test_missing_required(self, validator):
        with pytest.raises(InvalidJobParametersError) as exc_info:
            validator.validate(EMPTY_PARAMETERS)
        assert exc_info.value.missing_params == ["startDate"]

    def test_invalid_values_reported_by_name(self, validator):
        with pytest.raises(InvalidJobParametersError) as exc_info:
            validator.validate(JobParameters.from_dict({"startDate": "yesterday", "mode": "SLOW"}))
        assert set(exc_info.value.invalid_params) == {"startDate", "mode"}

    def test_wrong_type(self, validator):
        with pytest.raises(InvalidJobParametersError) as exc_info:
            validator.validate(JobParameters.from_dict({"startDate": 20250101}))
        assert "startDate" in exc_info.value.invalid_params

    def test_positive_number(self):
        assert positive_number(1)
        assert not positive_number(0)


class TestRunIdIncrementer:
    def test_first_run(self):
        params = RunIdIncrementer().get_next(None)
        assert params["run.id"] == 1

    def test_increments_and_keeps_previous_values(self):
        previous = JobParameters.from_dict({"run.id": 4, "mode": "FAST"})
        params = RunIdIncrementer().get_next(previous)
        assert params["run.id"] == 5
        assert params["mode"] == "FAST"

    def test_base_overrides_previous(self):
        previous = JobParameters.from_dict({"run.id": 1, "mode": "FAST"})
        params = RunIdIncrementer().get_next(previous, JobParameters.from_dict({"mode": "CAREFUL"}))
        assert params["mode"] == "CAREFUL"
        assert params["run.id"] == 2
