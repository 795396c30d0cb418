# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Executors apply provisioning steps to a target: a container image built
layer by layer through the container engine, or the current host.
"""
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import List, Dict, Optional
from dataclasses import dataclass

from ..errors import EnvprovError, ImageResolutionError
from ..MODELS.recipe import BaseImage
from ..RUNNERS.command_runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class StepOutcome:
    """What an executor reports back for one step."""
    exit_code: int
    image_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class Executor(ABC):
    """
    Target a recipe is applied to. One executor serves exactly one build.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    @property
    @abstractmethod
    def target(self) -> str:
        """Human readable name of what is being provisioned."""

    @abstractmethod
    def instantiate(self, base_image: BaseImage) -> Optional[str]:
        """
        Make the base filesystem available. Returns its image id, if any.

        Raises:
            ImageResolutionError: The reference cannot be resolved.
        """

    @abstractmethod
    def run(self, argv: List[str], env: Dict[str, str]) -> StepOutcome:
        """Apply one step's command."""

    @abstractmethod
    def probe(self, argv: List[str], image: Optional[str] = None) -> bool:
        """Run a check command against the target. True when it exits 0."""

    @abstractmethod
    def finalize(self, tag: Optional[str] = None) -> Optional[str]:
        """Seal a successful build. Returns the final image id, if any."""

    @abstractmethod
    def discard(self) -> None:
        """Throw away everything produced since instantiate()."""


class ContainerExecutor(Executor):
    """
    Builds an image through the container engine CLI. Each step runs in a
    throwaway container on top of the previous layer and is committed as
    the next layer.
    """

    def __init__(self, runner: Optional[CommandRunner] = None, docker: str = "docker"):
        """
        :param runner: Runs engine commands. Defaults to a CommandRunner.
        :param docker: Container engine executable (docker or a compatible CLI).
        """
        super().__init__(runner)
        self.docker = docker
        self.base_reference: Optional[str] = None
        self.current: Optional[str] = None
        self.committed: List[str] = []
        self._base_cmd: Optional[List[str]] = None

    @property
    def target(self) -> str:
        return self.current or self.base_reference or "image"

    def instantiate(self, base_image: BaseImage) -> Optional[str]:
        reference = base_image.reference
        self.base_reference = reference
        logger.info("Pulling base image %s", reference)

        pulled = self.runner.run([self.docker, "pull", reference])
        if not pulled.ok:
            raise ImageResolutionError(reference, f"{self.docker} pull exited with {pulled.exit_code}")

        inspected = self.runner.run(
            [self.docker, "image", "inspect", "--format", "{{.Id}}|{{json .Config.Cmd}}", reference],
            capture=True,
        )
        if not inspected.ok:
            raise ImageResolutionError(reference, f"{self.docker} image inspect exited with {inspected.exit_code}")

        image_id, _, cmd_json = inspected.stdout.strip().partition("|")
        if not image_id:
            raise ImageResolutionError(reference, "engine reported no image id")
        try:
            self._base_cmd = json.loads(cmd_json) if cmd_json else None
        except json.JSONDecodeError:
            self._base_cmd = None

        self.current = image_id
        self.committed = []
        return image_id

    def run(self, argv: List[str], env: Dict[str, str]) -> StepOutcome:
        if self.current is None:
            raise RuntimeError("instantiate() must be called before run()")

        # `env` wraps the command so the variables do not end up in the committed image config
        if env:
            argv = ["env"] + [f"{k}={v}" for k, v in sorted(env.items())] + list(argv)

        container = f"envprov-{uuid.uuid4().hex[:12]}"
        try:
            result = self.runner.run([self.docker, "run", "--name", container, self.current] + list(argv))
            if not result.ok:
                return StepOutcome(exit_code=result.exit_code)

            commit_cmd = [self.docker, "commit"]
            if self._base_cmd:
                # docker run replaced CMD with the step command, restore the base one
                commit_cmd += ["--change", f"CMD {json.dumps(self._base_cmd)}"]
            committed = self.runner.run(commit_cmd + [container], capture=True)
            if not committed.ok:
                return StepOutcome(exit_code=committed.exit_code)
        finally:
            self.runner.run([self.docker, "rm", "-f", container], quiet=True)

        image_id = committed.stdout.strip()
        self.committed.append(image_id)
        self.current = image_id
        return StepOutcome(exit_code=0, image_id=image_id)

    def probe(self, argv: List[str], image: Optional[str] = None) -> bool:
        image = image or self.current or self.base_reference
        if image is None:
            raise RuntimeError("No image to probe")
        return self.runner.run([self.docker, "run", "--rm", image] + list(argv), quiet=True).ok

    def finalize(self, tag: Optional[str] = None) -> Optional[str]:
        if tag and self.current:
            tagged = self.runner.run([self.docker, "tag", self.current, tag])
            if not tagged.ok:
                self.discard()
                raise EnvprovError(f"{self.docker} tag exited with {tagged.exit_code}")
        return self.current

    def discard(self) -> None:
        for image_id in reversed(self.committed):
            self.runner.run([self.docker, "rmi", "-f", image_id], quiet=True)
        if self.committed:
            logger.info("Discarded %d intermediate layer(s)", len(self.committed))
        self.committed = []
        self.current = None


class LocalExecutor(Executor):
    """
    Applies steps directly to the host, for runs inside an environment that
    already is the base image. There are no layers to commit or discard.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        super().__init__(runner)
        self.base_reference: Optional[str] = None

    @property
    def target(self) -> str:
        return "localhost"

    def instantiate(self, base_image: BaseImage) -> Optional[str]:
        self.base_reference = base_image.reference
        logger.info("Provisioning host in place of %s", base_image.reference)
        return None

    def run(self, argv: List[str], env: Dict[str, str]) -> StepOutcome:
        result = self.runner.run(list(argv), env=env)
        return StepOutcome(exit_code=result.exit_code)

    def probe(self, argv: List[str], image: Optional[str] = None) -> bool:
        return self.runner.run(list(argv), quiet=True).ok

    def finalize(self, tag: Optional[str] = None) -> Optional[str]:
        if tag:
            logger.warning("Ignoring tag %s: host builds produce no image", tag)
        return None

    def discard(self) -> None:
        logger.warning("Host provisioning cannot be rolled back; earlier steps stay applied")
