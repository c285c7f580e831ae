"""Core infrastructure components for aws-provisioner."""

from aws_provisioner.core.provider import AWSProvider
from aws_provisioner.core.state import ResourceInstance, State, StateStore

__all__ = ["AWSProvider", "ResourceInstance", "State", "StateStore"]
