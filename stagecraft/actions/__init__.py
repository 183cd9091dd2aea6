"""Pipeline actions - build, infrastructure, migrate, deploy.

Usage::

    from stagecraft.actions import BuildAction

    action = BuildAction(spec, service_name="svc", repository_uri="registry/svc",
                         executor=executor, registry=registry)
    outcome = action.run_action(context)
"""

from __future__ import annotations

from stagecraft.actions.base import ActionContext, ActionOutcome, BaseAction
from stagecraft.actions.build import BuildAction
from stagecraft.actions.deploy import DeployAction
from stagecraft.actions.infrastructure import InfrastructureAction
from stagecraft.actions.migration import MigrationAction

__all__ = [
    "ActionContext",
    "ActionOutcome",
    "BaseAction",
    "BuildAction",
    "DeployAction",
    "InfrastructureAction",
    "MigrationAction",
]
