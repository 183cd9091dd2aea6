"""Adversarial tests - topologies that would break stage ordering.

Every one of these must be refused when the pipeline is constructed, so
nothing ever executes against an invalid graph.
"""

from __future__ import annotations

import pytest

from stagecraft.core.errors import PipelineValidationError
from stagecraft.core.pipeline_factory import IMAGE_DEFINITIONS_REF
from stagecraft.models.artifacts import SOURCE_REF, ArtifactRef
from stagecraft.models.pipeline import Pipeline, Stage


class TestTopologyRejection:
    def test_deploy_in_build_stage(self, make_action, make_pipeline):
        """Deploying from the stage that builds the image is a same-stage read."""
        build = make_action("build-api", "BuildAPI", inputs=[SOURCE_REF], outputs=["imagedefinitions"])
        deploy = make_action("deploy-api", "BuildAPI", inputs=[IMAGE_DEFINITIONS_REF])
        with pytest.raises(PipelineValidationError):
            make_pipeline([("BuildAPI", [build, deploy])])

    def test_swapped_stage_order(self, make_action, make_pipeline):
        build = make_action("build-api", "BuildAPI", inputs=[SOURCE_REF], outputs=["imagedefinitions"])
        deploy = make_action("deploy-api", "DeployAPI", inputs=[IMAGE_DEFINITIONS_REF])
        with pytest.raises(PipelineValidationError, match="later stage"):
            make_pipeline([("DeployAPI", [deploy]), ("BuildAPI", [build])])

    def test_cycle_between_stages(self, make_action, make_pipeline):
        a = make_action("a", "A", inputs=[ArtifactRef(stage_id="B", slot="out")], outputs=["out"])
        b = make_action("b", "B", inputs=[ArtifactRef(stage_id="A", slot="out")], outputs=["out"])
        with pytest.raises(PipelineValidationError):
            make_pipeline([("A", [a]), ("B", [b])])

    def test_hijacking_the_source_slot(self, make_action, make_pipeline):
        """An action may not claim the source artifact as its own output."""
        impostor = make_action("impostor", "Build", outputs=["x"])
        with pytest.raises(PipelineValidationError):
            make_pipeline([("source", [impostor])])

    def test_reordered_ordinals(self, make_action):
        with pytest.raises(PipelineValidationError):
            Pipeline(
                name="p",
                environment="dev",
                branch="dev",
                repository="repo",
                stages=(
                    Stage(name="b", ordinal=1, actions=(make_action("y", "b"),)),
                    Stage(name="a", ordinal=0, actions=(make_action("x", "a"),)),
                ),
            )

    def test_stage_cannot_be_swapped_after_construction(self, make_action, make_pipeline):
        pipeline = make_pipeline([("A", [make_action("x", "A")])])
        with pytest.raises(Exception):
            pipeline.stages = ()
        assert len(pipeline.stages) == 1
