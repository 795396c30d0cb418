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
Converter that renders a recipe as a Dockerfile, one RUN per step.
"""
import logging
import os
import shlex
from typing import List
from jinja2 import Environment

from ..MODELS.recipe import ComponentStep, LibraryInstallStep, Recipe, SystemPackageStep

logger = logging.getLogger(__name__)

DOCKERFILE_TEMPLATE = """\
# {{ name }} ({{ fingerprint[:12] }}), generated by envprov
FROM {{ base }}
{% for lines in runs %}

RUN {{ lines | join(' \\\\\\n    ') }}
{% endfor %}
"""


class DockerfileConverter:
    """
    Renders a Recipe as a Dockerfile.
    """

    def __init__(self, recipe: Recipe):
        """
        Initializes the converter.

        :param recipe: The recipe to render.
        """
        self.recipe = recipe
        self.template = Environment(trim_blocks=True, keep_trailing_newline=True).from_string(
            DOCKERFILE_TEMPLATE
        )

    def _run_lines(self, step) -> List[str]:
        """
        Continuation lines for one step's RUN instruction. Empty if there is nothing to run.
        """
        if isinstance(step, ComponentStep):
            return [f"{step.manager} component add {step.component}"]
        if isinstance(step, SystemPackageStep):
            return [
                f"{step.manager} update &&",
                f"DEBIAN_FRONTEND=noninteractive {step.manager} install -y",
                step.package,
            ]
        if isinstance(step, LibraryInstallStep):
            if not step.packages:
                return []
            head = " ".join([step.installer, "install"] + [shlex.quote(a) for a in step.extra_args])
            return [head] + [shlex.quote(p) for p in step.packages]
        raise TypeError(f"Unknown step {step!r}")

    def render(self) -> str:
        """
        :return: Dockerfile text.
        """
        runs = [lines for lines in (self._run_lines(s) for s in self.recipe.steps) if lines]
        return self.template.render(
            name=self.recipe.name,
            fingerprint=self.recipe.fingerprint(),
            base=self.recipe.base_image.reference,
            runs=runs,
        )

    def convert(self, output_path: str = "Dockerfile") -> str:
        """
        Writes the Dockerfile.

        :param output_path: Destination file.
        :return: The path written.
        """
        directory = os.path.dirname(output_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(output_path, "w") as f:
            f.write(self.render())
        logger.info("Dockerfile written to %s", output_path)
        return output_path
