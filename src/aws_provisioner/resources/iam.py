"""IAM resource model."""

from __future__ import annotations

from typing import Annotated, ClassVar

from pydantic import Field

from aws_provisioner.resources.base import Resource
from aws_provisioner.resources.expressions import Expr, JsonObject
from aws_provisioner.resources.markers import Compare, Immutable

ECS_TASKS_TRUST_POLICY = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ecs-tasks.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


class IamRoleResource(Resource):
    """An IAM role with attached managed policies.

    ``assume_role_policy`` may be given as a mapping or as a JSON-encoded
    string; it defaults to a trust policy for ECS tasks.
    """

    resource_type: ClassVar[str] = "aws_iam_role"

    role_name: Annotated[str | None, Immutable()] = Field(
        default=None, pattern=r"^[\w+=,.@-]+$", max_length=64
    )
    path: Annotated[str, Immutable()] = Field(default="/", pattern=r"^/(?:[\x21-\x7e]*/)?$")
    description: str = ""
    assume_role_policy: Annotated[JsonObject, Compare("exact")] = Field(
        default_factory=lambda: dict(ECS_TASKS_TRUST_POLICY)
    )
    managed_policy_arns: Annotated[list[Expr], Compare("set")] = Field(default_factory=list)

    @property
    def aws_name(self) -> str:
        return self.role_name or self.name
