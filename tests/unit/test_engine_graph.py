from __future__ import annotations

from typing import ClassVar

import pytest

from aws_provisioner.engine.errors import (
    CycleError,
    DuplicateAddressError,
    UnknownReferenceError,
)
from aws_provisioner.engine.graph import DependencyGraph, build_resource_graph
from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.expressions import Expr  # noqa: TC001 - pydantic needs it
from aws_provisioner.resources.network import SubnetResource, VpcResource


class Node(Resource):
    resource_type: ClassVar[str] = "node"

    upstream: Expr | None = None


def test_topological_order_deterministic() -> None:
    graph = DependencyGraph(nodes=["a", "b", "c"], dependencies={"b": ["a"], "c": ["a"]})
    assert graph.topological_order() == ["a", "b", "c"]


def test_topological_order_ignores_external_deps() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"b": ["external"]})
    assert graph.topological_order() == ["a", "b"]


def test_cycle_detection() -> None:
    graph = DependencyGraph(nodes=["a", "b"], dependencies={"a": ["b"], "b": ["a"]})
    with pytest.raises(CycleError) as exc_info:
        graph.topological_order()
    assert exc_info.value.addresses == ["a", "b"]


def test_priority_ordering() -> None:
    """Nodes with lower priority come first when no deps constrain order."""
    graph = DependencyGraph(
        nodes=["high", "low"],
        dependencies={},
        priorities={"high": 100, "low": 0},
    )
    assert graph.topological_order() == ["low", "high"]


def test_priority_does_not_override_deps() -> None:
    graph = DependencyGraph(
        nodes=["high", "low"],
        dependencies={"low": ["high"]},
        priorities={"high": 100, "low": 0},
    )
    assert graph.topological_order() == ["high", "low"]


def test_waves_group_independent_nodes() -> None:
    graph = DependencyGraph(
        nodes=["a", "b", "c", "d", "e"],
        dependencies={"c": ["a", "b"], "d": ["c"], "e": ["c"]},
    )
    assert graph.waves() == [["a", "b"], ["c"], ["d", "e"]]


def test_dependents_are_transitive() -> None:
    graph = DependencyGraph(
        nodes=["a", "b", "c", "d"], dependencies={"b": ["a"], "c": ["b"], "d": []}
    )
    assert graph.dependents_of("a") == {"b", "c"}


class TestBuildResourceGraph:
    def test_edges_from_references(self) -> None:
        vpc = VpcResource(name="main", cidr_block="10.0.0.0/16")
        subnet = SubnetResource(name="a", vpc_id="${aws_vpc.main.id}", cidr_block="10.0.1.0/24")

        graph = build_resource_graph([subnet, vpc])

        assert graph.dependencies["aws_subnet.a"] == ["aws_vpc.main"]
        assert graph.topological_order() == ["aws_vpc.main", "aws_subnet.a"]
        assert graph.waves() == [["aws_vpc.main"], ["aws_subnet.a"]]

    def test_explicit_depends_on(self) -> None:
        a = Node(name="a")
        b = Node(name="b", depends_on=["node.a"])
        assert build_resource_graph([b, a]).topological_order() == ["node.a", "node.b"]

    def test_cycle_fails_at_build_time(self) -> None:
        a = Node(name="a", upstream="${node.b.id}")
        b = Node(name="b", upstream="${node.a.id}")
        with pytest.raises(CycleError, match="node.a"):
            build_resource_graph([a, b])

    def test_self_reference_is_a_cycle(self) -> None:
        a = Node(name="a", upstream="${node.a.id}")
        with pytest.raises(CycleError):
            build_resource_graph([a])

    def test_unknown_reference(self) -> None:
        a = Node(name="a", upstream="${node.missing.id}")
        with pytest.raises(UnknownReferenceError) as exc_info:
            build_resource_graph([a])
        assert exc_info.value.address == "node.a"
        assert exc_info.value.target == "node.missing"
        assert exc_info.value.tracked is False

    def test_unknown_reference_to_tracked_resource_mentions_orphan(self) -> None:
        subnet = SubnetResource(name="a", vpc_id="${aws_vpc.main.id}", cidr_block="10.0.1.0/24")
        with pytest.raises(UnknownReferenceError, match="orphan"):
            build_resource_graph([subnet], tracked={"aws_vpc.main", "aws_subnet.a"})

    def test_duplicate_address(self) -> None:
        with pytest.raises(DuplicateAddressError):
            build_resource_graph([Node(name="a"), Node(name="a")])
