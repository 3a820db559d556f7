"""Tests for input validation and folder-qualified job paths."""

from __future__ import annotations

import pytest

from jenkins_ops_mcp.exceptions import ValidationError
from jenkins_ops_mcp.validation import (
    JobPath,
    validate_build_number,
    validate_config_xml,
    validate_job_name,
    validate_parameters,
)


class TestJobName:
    @pytest.mark.parametrize("name", ["my-job", "my_job.v2", "folder/sub/my-job"])
    def test_valid(self, name):
        assert validate_job_name(name) == name

    @pytest.mark.parametrize("name", [
        "../etc/passwd", "folder//job", "/leading", "trailing/", "has space", "semi;colon", "a/./b", "",
        None, 42, "x" * 256,
    ])
    def test_invalid(self, name):
        with pytest.raises(ValidationError):
            validate_job_name(name)

    def test_validation_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_job_name("bad name")


class TestBuildNumber:
    @pytest.mark.parametrize("value,expected", [
        (7, 7), ("12", 12), ("lastBuild", "lastBuild"), ("lastSuccessfulBuild", "lastSuccessfulBuild"),
        ("lastFailedBuild", "lastFailedBuild"),
    ])
    def test_valid(self, value, expected):
        assert validate_build_number(value) == expected

    @pytest.mark.parametrize("value", [0, -3, "abc", "1.5", True, None, 2.0])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            validate_build_number(value)


class TestParameters:
    def test_none_is_empty(self):
        assert validate_parameters(None) == {}

    def test_scalar_values_accepted(self):
        params = {"BRANCH": "main", "COUNT": 3, "RATIO": 0.5, "DEPLOY": True}
        assert validate_parameters(params) == params

    @pytest.mark.parametrize("params", [["a"], {"": "x"}, {"LIST": [1, 2]}, {"OBJ": {"a": 1}}])
    def test_invalid(self, params):
        with pytest.raises(ValidationError):
            validate_parameters(params)


class TestConfigXml:
    def test_strips_and_returns(self):
        assert validate_config_xml("  <project/>\n") == "<project/>"

    def test_rejects_non_xml(self):
        with pytest.raises(ValidationError):
            validate_config_xml("project")


class TestJobPath:
    def test_url_path_for_nested_job(self):
        path = JobPath.parse("folder/sub/my-job")
        assert path.segments == ("folder", "sub", "my-job")
        assert path.url_path() == "job/folder/job/sub/job/my-job"
        assert path.url_path("config.xml") == "job/folder/job/sub/job/my-job/config.xml"
        assert path.url_path(42, "api/json") == "job/folder/job/sub/job/my-job/42/api/json"

    def test_parent_and_name(self):
        path = JobPath.parse("folder/sub/my-job")
        assert path.name == "my-job"
        assert path.parent.full_name == "folder/sub"
        assert JobPath.parse("top").parent is None

    def test_str_is_full_name(self):
        assert str(JobPath.parse("a/b")) == "a/b"
