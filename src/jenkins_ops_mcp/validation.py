"""
Input validation and job path handling.

Everything here runs before a request is built, so a bad name never costs a
network round trip or a retry.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import quote

from .exceptions import ValidationError

_JOB_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-/]+$")
_MAX_NAME_LENGTH = 255

BUILD_ALIASES = frozenset({
    "lastBuild",
    "lastSuccessfulBuild",
    "lastFailedBuild",
    "lastCompletedBuild",
    "lastStableBuild",
    "lastUnstableBuild",
})

BuildRef = Union[int, str]
ParamValue = Union[str, int, float, bool]


def validate_job_name(job_name: Any) -> str:
    """Letters, digits, '_', '-', '.', and '/' for folders"""
    if job_name is None or job_name == "":
        raise ValidationError("Missing required argument: job_name")
    if not isinstance(job_name, str):
        raise ValidationError(f"job_name must be a string, got {type(job_name).__name__}")
    job_name = job_name.strip()
    if not job_name:
        raise ValidationError("job_name cannot be empty or whitespace")
    if len(job_name) > _MAX_NAME_LENGTH:
        raise ValidationError("job_name too long")
    if not _JOB_NAME_RE.match(job_name):
        raise ValidationError(
            "Job name can contain letters, numbers, underscores, hyphens, dots, "
            "and forward slashes for folder paths"
        )
    segments = job_name.split("/")
    if any(segment in ("", ".", "..") for segment in segments):
        raise ValidationError(f"Invalid job path: {job_name}")
    return job_name


def validate_build_number(build_number: Any) -> BuildRef:
    """Positive integer (or digit string) or one of the Jenkins build aliases"""
    if build_number is None or build_number == "":
        raise ValidationError("Missing required argument: build_number")
    if isinstance(build_number, bool):
        raise ValidationError(f"build_number must be an integer, got: {build_number}")
    if isinstance(build_number, str):
        value = build_number.strip()
        if value in BUILD_ALIASES:
            return value
        if not value.isdigit():
            raise ValidationError(f"build_number must be a positive integer or alias, got: {build_number}")
        build_number = int(value)
    if not isinstance(build_number, int):
        raise ValidationError(f"build_number must be an integer, got: {build_number}")
    if build_number <= 0:
        raise ValidationError(f"Build number must be positive, got: {build_number}")
    return build_number


def validate_parameters(parameters: Any) -> Dict[str, ParamValue]:
    if parameters is None:
        return {}
    if not isinstance(parameters, dict):
        raise ValidationError(f"parameters must be a dictionary, got {type(parameters).__name__}")
    for key, value in parameters.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("Parameter name cannot be empty")
        if not isinstance(value, (str, int, float, bool)):
            raise ValidationError(
                f"Parameter '{key}' must be a string, number or boolean, got {type(value).__name__}"
            )
    return dict(parameters)


def validate_node_name(node_name: Any) -> str:
    if not node_name or not isinstance(node_name, str) or not node_name.strip():
        raise ValidationError("Missing required argument: node_name")
    node_name = node_name.strip()
    if len(node_name) > _MAX_NAME_LENGTH:
        raise ValidationError("node_name too long")
    return node_name


def validate_config_xml(config_xml: Any) -> str:
    if not config_xml:
        raise ValidationError("Missing required argument: config_xml")
    if not isinstance(config_xml, str):
        raise ValidationError(f"config_xml must be a string, got {type(config_xml).__name__}")
    xml_str = config_xml.strip()
    if not xml_str.startswith("<"):
        raise ValidationError("config_xml must be valid XML (should start with '<')")
    return xml_str


@dataclass(frozen=True)
class JobPath:
    """
    Folder-qualified job name as ordered segments.

    'folder/sub/my-job' -> job/folder/job/sub/job/my-job
    """
    segments: Tuple[str, ...]

    @classmethod
    def parse(cls, job_name: Any) -> "JobPath":
        return cls(tuple(validate_job_name(job_name).split("/")))

    @property
    def name(self) -> str:
        return self.segments[-1]

    @property
    def full_name(self) -> str:
        return "/".join(self.segments)

    @property
    def parent(self) -> Optional["JobPath"]:
        if len(self.segments) == 1:
            return None
        return JobPath(self.segments[:-1])

    def url_path(self, *suffix: Any) -> str:
        """Jenkins URL path, with optional trailing path parts"""
        path = "/".join(f"job/{quote(segment, safe='')}" for segment in self.segments)
        for part in suffix:
            path += f"/{part}"
        return path

    def __str__(self) -> str:
        return self.full_name
