"""
The provisioning loop: applies a recipe's steps to a fresh base image, in order,
stopping at the first failure.
"""
import logging
import time
from typing import Optional, Dict, Type

from ..errors import (
    ComponentInstallError,
    LibraryInstallError,
    StepFailedError,
    SystemPackageError,
)
from ..MODELS.build_result import BuildResult, Layer
from ..MODELS.recipe import ComponentStep, LibraryInstallStep, Recipe, SystemPackageStep
from ..REGISTRY.image_cache import ImageCache
from ..REGISTRY.registry_client import RegistryClient
from .executors import Executor

logger = logging.getLogger(__name__)

STEP_ERRORS: Dict[type, Type[StepFailedError]] = {
    ComponentStep: ComponentInstallError,
    SystemPackageStep: SystemPackageError,
    LibraryInstallStep: LibraryInstallError,
}


class Provisioner:
    """
    Applies a Recipe through an Executor.

    Either every step succeeds and a BuildResult is returned, or the
    executor's partial work is discarded and the step's error propagates.
    """
    def __init__(self,
                 executor: Executor,
                 cache: Optional[ImageCache] = None,
                 registry: Optional[RegistryClient] = None):
        """
        Initializes the Provisioner.

        :param executor: Target the steps are applied to.
        :param cache: Index that completed builds are recorded in.
        :param registry: When given, the base reference is resolved against
                         the registry before anything is pulled.
        """
        self.executor = executor
        self.cache = cache
        self.registry = registry

    def build(self, recipe: Recipe, tag: Optional[str] = None) -> BuildResult:
        """
        Runs every step of the recipe in order.

        :param recipe: The recipe to apply.
        :param tag: Name given to the finished image.
        :return: The completed build.
        :raises ImageResolutionError: The base image could not be resolved.
        :raises StepFailedError: A step exited non-zero. Subclass per step kind.
        """
        fingerprint = recipe.fingerprint()
        logger.info("Building %s (%s) from %s", recipe.name, fingerprint[:12], recipe.base_image.reference)
        for gap in recipe.unpinned():
            logger.warning("Not pinned, build may not be reproducible: %s", gap)

        # Step 1, nothing to discard if it fails
        if self.registry is not None:
            self.registry.resolve(recipe.base_image.reference)
        base_image_id = self.executor.instantiate(recipe.base_image)

        result = BuildResult(
            recipe_name=recipe.name,
            fingerprint=fingerprint,
            base_reference=recipe.base_image.reference,
            base_image_id=base_image_id,
        )

        try:
            for index, step in enumerate(recipe.steps, start=2):
                result.layers.append(self._apply(index, step))
            result.image_id = self.executor.finalize(tag)
        except BaseException:
            self.executor.discard()
            raise

        result.tag = tag
        if self.cache is not None:
            self.cache.record(result)
        logger.info("Build of %s complete: %d step(s) applied", recipe.name, len(result.layers))
        return result

    def _apply(self, index: int, step) -> Layer:
        """
        Applies one step and turns a non-zero exit into the matching error.
        """
        label = step.describe()
        argv = step.command()
        if not argv:
            logger.info("Step %d: %s, nothing to do", index, label)
            return Layer(index=index, step=label, skipped=True)

        logger.info("Step %d: %s", index, label)
        logger.debug("Step %d command: %s", index, " ".join(argv))
        started = time.monotonic()
        outcome = self.executor.run(argv, step.environment())
        duration = time.monotonic() - started

        if not outcome.ok:
            error_class = STEP_ERRORS.get(type(step), StepFailedError)
            raise error_class(label, outcome.exit_code, index=index)

        if outcome.image_id:
            logger.info("Step %d done in %.1fs -> %s", index, duration, outcome.image_id[:19])
        else:
            logger.info("Step %d done in %.1fs", index, duration)
        return Layer(
            index=index,
            step=label,
            command=argv,
            image_id=outcome.image_id,
            duration=duration,
        )
