"""
Checks that a provisioned target has everything its recipe installs.
"""
import logging
from typing import Optional

from ..MODELS.build_result import VerificationReport
from ..MODELS.recipe import Recipe
from .executors import Executor

logger = logging.getLogger(__name__)


class Verifier:
    """
    Runs each step's probe command against a target.
    """
    def __init__(self, executor: Executor):
        self.executor = executor

    def verify(self, recipe: Recipe, image: Optional[str] = None) -> VerificationReport:
        """
        Probes the target for every step's effect.

        A failed probe is reported, not raised.

        :param recipe: Recipe the target was built from.
        :param image: Image to probe. Ignored by executors without images.
        :return: One check per step that has something to probe.
        """
        report = VerificationReport(target=image or self.executor.target)
        for step in recipe.steps:
            probe = step.probe()
            if probe is None:
                continue
            label = step.describe()
            present = self.executor.probe(probe, image=image)
            report.checks[label] = present
            if present:
                logger.info("Present: %s", label)
            else:
                logger.warning("Missing: %s", label)
        return report
