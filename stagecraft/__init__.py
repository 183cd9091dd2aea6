"""Stagecraft: deployment pipeline orchestrator for containerized services.

Sequences source retrieval, infrastructure synthesis, image build,
database migration and rolling deploys, and drives the autoscaled
service runtime those deploys land on.
"""

__version__ = "0.1.0"
__description__ = "Deployment pipeline orchestrator with rollout circuit breaker and autoscaling"

from stagecraft.core.pipeline_factory import create_pipeline
from stagecraft.core.sequencer import Sequencer
from stagecraft.monitor.projection import MonitorProjection
from stagecraft.cli.app import app as cli

__all__ = ["Sequencer", "create_pipeline", "MonitorProjection", "cli", "__version__"]
