"""Tests for ${...} reference parsing and resolution."""

from __future__ import annotations

import pytest

from aws_provisioner.engine.errors import UnresolvedReferenceError
from aws_provisioner.resources.expressions import (
    UNKNOWN,
    Interpolation,
    Reference,
    collect_references,
    contains_unknown,
    decode_json,
    parse_expressions,
    parse_string,
    resolve_expressions,
)

_OUTPUTS = {
    "aws_vpc.main": {"id": "vpc-123"},
    "aws_ecr_repository.app": {"repository_url": "123.dkr.ecr.eu-west-1.amazonaws.com/app"},
}


class TestParse:
    def test_plain_string_is_untouched(self) -> None:
        assert parse_string("10.0.0.0/16") == "10.0.0.0/16"

    def test_whole_string_reference(self) -> None:
        ref = parse_string("${aws_vpc.main.id}")
        assert ref == Reference(resource_type="aws_vpc", name="main", attribute="id")
        assert ref.address == "aws_vpc.main"
        assert str(ref) == "${aws_vpc.main.id}"

    def test_embedded_reference_is_interpolation(self) -> None:
        value = parse_string("${aws_ecr_repository.app.repository_url}:latest")
        assert isinstance(value, Interpolation)
        assert [r.address for r in value.references] == ["aws_ecr_repository.app"]
        assert str(value) == "${aws_ecr_repository.app.repository_url}:latest"

    def test_escape_keeps_literal(self) -> None:
        value = parse_string("echo $${HOME}")
        assert isinstance(value, Interpolation)
        assert value.references == []
        assert resolve_expressions(value, {}) == "echo ${HOME}"
        assert str(value) == "echo $${HOME}"

    def test_invalid_reference_raises(self) -> None:
        with pytest.raises(ValueError, match="Invalid reference"):
            parse_string("${aws_vpc.main}")

    def test_leftover_variable_raises(self) -> None:
        with pytest.raises(ValueError, match="Undefined variable 'region'"):
            parse_string("${var.region}")

    def test_parse_is_recursive(self) -> None:
        parsed = parse_expressions({"a": ["${aws_vpc.main.id}", 1], "b": {"c": "x"}})
        assert isinstance(parsed["a"][0], Reference)
        assert parsed["a"][1] == 1
        assert parsed["b"] == {"c": "x"}

    def test_collect_references_walks_containers(self) -> None:
        parsed = parse_expressions(
            {"vpc": "${aws_vpc.main.id}", "image": ["${aws_ecr_repository.app.arn}:v1"]}
        )
        addresses = sorted(r.address for r in collect_references(parsed))
        assert addresses == ["aws_ecr_repository.app", "aws_vpc.main"]


class TestResolve:
    def test_resolves_known_outputs(self) -> None:
        parsed = parse_expressions(
            {"vpc_id": "${aws_vpc.main.id}", "image": "${aws_ecr_repository.app.repository_url}:1"}
        )
        assert resolve_expressions(parsed, _OUTPUTS) == {
            "vpc_id": "vpc-123",
            "image": "123.dkr.ecr.eu-west-1.amazonaws.com/app:1",
        }

    def test_missing_output_raises(self) -> None:
        with pytest.raises(UnresolvedReferenceError, match=r"aws_subnet\.a\.id"):
            resolve_expressions(parse_string("${aws_subnet.a.id}"), _OUTPUTS)

    def test_missing_output_becomes_unknown_at_plan_time(self) -> None:
        value = parse_expressions(["${aws_subnet.a.id}", "prefix-${aws_subnet.a.id}"])
        assert resolve_expressions(value, {}, unknown=UNKNOWN) == [UNKNOWN, UNKNOWN]

    def test_null_output_is_not_known(self) -> None:
        outputs = {"aws_vpc.main": {"id": None}}
        value = parse_string("${aws_vpc.main.id}")
        assert resolve_expressions(value, outputs, unknown=None) is None


def test_contains_unknown_nested() -> None:
    assert contains_unknown({"a": [{"b": UNKNOWN}]})
    assert not contains_unknown({"a": [{"b": "vpc-1"}]})


def test_decode_json_accepts_documents_and_structures() -> None:
    assert decode_json('{"Version": "2012-10-17"}') == {"Version": "2012-10-17"}
    assert decode_json([{"name": "web"}]) == [{"name": "web"}]
    with pytest.raises(ValueError, match="Invalid JSON"):
        decode_json("{not json")
