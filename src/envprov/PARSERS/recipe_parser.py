"""
Loaders that turn YAML recipe files and Dockerfiles into Recipe models.
"""
import os
import re
import shlex
from typing import Dict, Any, List, Optional

import yaml
from pydantic import ValidationError

from ..errors import RecipeError
from ..MODELS.dockerfile_ast import Instruction
from ..MODELS.recipe import (
    BaseImage,
    ComponentStep,
    LibraryInstallStep,
    Recipe,
    SystemPackageStep,
)
from ..UTILS.string_interpolation import EnvironmentInterpolator
from .dockerfile_parser import DockerfileParser

SHORTHAND_KINDS = {
    "component": "component",
    "system-package": "package",
    "libraries": "packages",
}

ASSIGNMENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
PACKAGE_MANAGERS = ("apt-get", "apt")
INSTALLERS = ("pip3", "pip")
# pip options that consume the following token
PIP_VALUE_OPTIONS = {
    "-i", "--index-url", "--extra-index-url", "-f", "--find-links",
    "-c", "--constraint", "--target", "-t", "--prefix", "--root",
    "--platform", "--python-version", "--trusted-host",
}


def is_dockerfile(path: str) -> bool:
    """Dockerfile, Dockerfile.dev, rust.Dockerfile, ..."""
    return "dockerfile" in os.path.basename(path).lower()


class RecipeParser:
    """
    Parser for recipe files.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with the variables used for ${VAR} interpolation.

        :param context: Interpolation variables. Defaults to os.environ.
        """
        self.context = dict(os.environ) if context is None else context
        self.dockerfile_parser = DockerfileParser()

    def load(self, path: str) -> Recipe:
        """
        Loads a recipe from a YAML file or a Dockerfile, chosen by file name.

        :param path: Path to the file.
        :return: The recipe.
        """
        if is_dockerfile(path):
            instructions = self.dockerfile_parser.parse(path)
            name = os.path.basename(os.path.dirname(os.path.abspath(path))) or "envprov"
            return self.from_instructions(instructions, name=name)

        with open(path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Recipe:
        """
        Parses a YAML recipe.

        :param content: YAML text.
        :return: The recipe.
        :raises RecipeError: Unknown variable, invalid YAML or invalid recipe.
        """
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context)
        except KeyError as e:
            raise RecipeError(f"Variable {e.args[0]} is not set") from e

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise RecipeError(f"Invalid YAML: {e}") from e

        if not isinstance(data, dict):
            raise RecipeError("A recipe must be a mapping")

        base = data.get("base_image")
        if isinstance(base, str):
            try:
                data["base_image"] = BaseImage.from_reference(base).model_dump()
            except ValueError as e:
                raise RecipeError(str(e)) from e

        steps = data.get("steps") or []
        if not isinstance(steps, list):
            raise RecipeError("steps must be a list")
        data["steps"] = [self._expand_step(s) for s in steps]

        try:
            return Recipe.model_validate(data)
        except ValidationError as e:
            raise RecipeError(f"Invalid recipe: {e}") from e

    def _expand_step(self, step: Any) -> Any:
        """
        Accepts the `{component: rustfmt}` shorthand next to the full form.
        """
        if isinstance(step, dict) and "kind" not in step and len(step) == 1:
            kind, value = next(iter(step.items()))
            if kind in SHORTHAND_KINDS:
                if kind == "libraries" and value is None:
                    value = []
                return {"kind": kind, SHORTHAND_KINDS[kind]: value}
        return step

    def dump(self, recipe: Recipe) -> str:
        """
        Serialises a recipe as YAML in the full form.

        :param recipe: Recipe to write.
        :return: YAML text.
        """
        data = recipe.model_dump(mode="json", exclude_none=True)
        data["base_image"] = recipe.base_image.reference
        return yaml.safe_dump(data, sort_keys=False)

    def from_instructions(self, instructions: List[Instruction], name: str = "envprov") -> Recipe:
        """
        Maps Dockerfile instructions onto recipe steps.

        Only FROM and the three supported RUN shapes are understood: a
        component add, an index refresh chained with one package install,
        and one library installer call.

        :param instructions: Parsed instructions.
        :param name: Name for the resulting recipe.
        :return: The recipe.
        :raises RecipeError: The Dockerfile uses anything else.
        """
        base_image = None
        steps = []

        for inst in instructions:
            if inst.instruction == "FROM":
                if base_image is not None:
                    raise RecipeError(f"line {inst.line}: multi-stage builds are not supported")
                words = [w for w in " ".join(inst.arguments).split() if not w.startswith("--")]
                if not words:
                    raise RecipeError(f"line {inst.line}: FROM without an image")
                reference = words[0]
                try:
                    base_image = BaseImage.from_reference(reference)
                except ValueError as e:
                    raise RecipeError(f"line {inst.line}: {e}") from e
            elif inst.instruction == "RUN":
                if base_image is None:
                    raise RecipeError(f"line {inst.line}: RUN before FROM")
                try:
                    steps.extend(self._steps_from_run(inst))
                except ValidationError as e:
                    raise RecipeError(f"line {inst.line}: {e}") from e
            else:
                raise RecipeError(f"line {inst.line}: unsupported instruction {inst.instruction}")

        if base_image is None:
            raise RecipeError("No FROM instruction")

        try:
            return Recipe(name=name, base_image=base_image, steps=steps)
        except ValidationError as e:
            raise RecipeError(f"Invalid recipe: {e}") from e

    def _steps_from_run(self, inst: Instruction) -> List[Any]:
        if inst.exec_form:
            commands = [inst.arguments]
        else:
            try:
                commands = [shlex.split(c) for c in inst.commands()]
            except ValueError as e:
                raise RecipeError(f"line {inst.line}: {e}") from e

        steps = []
        refreshed = None
        for argv in commands:
            # Leading VAR=value assignments only affect the command environment
            while argv and ASSIGNMENT.match(argv[0]):
                argv = argv[1:]
            if not argv:
                continue
            tool = argv[0]
            if tool == "rustup" and argv[1:3] == ["component", "add"] and len(argv) > 3:
                steps.extend(ComponentStep(component=c) for c in argv[3:])
            elif tool in PACKAGE_MANAGERS and _words(argv) == ["update"]:
                refreshed = tool
            elif tool in PACKAGE_MANAGERS and _words(argv)[:1] == ["install"]:
                if refreshed is None:
                    raise RecipeError(
                        f"line {inst.line}: {tool} install must follow {tool} update in the same RUN"
                    )
                packages = _words(argv)[1:]
                if len(packages) != 1:
                    raise RecipeError(
                        f"line {inst.line}: expected exactly one system package, got {len(packages)}"
                    )
                steps.append(SystemPackageStep(package=packages[0], manager=tool))
                refreshed = None
            elif tool in INSTALLERS and len(argv) > 1 and argv[1] == "install":
                steps.append(self._library_step(tool, argv[2:], inst.line))
            else:
                raise RecipeError(f"line {inst.line}: unsupported command: {' '.join(argv)}")

        if refreshed is not None:
            raise RecipeError(f"line {inst.line}: {refreshed} update without an install")
        return steps

    def _library_step(self, installer: str, args: List[str], line: int) -> LibraryInstallStep:
        packages = []
        extra_args = []
        pending_value = False
        for arg in args:
            if pending_value:
                extra_args.append(arg)
                pending_value = False
            elif arg in ("-r", "--requirement") or arg.startswith("--requirement="):
                raise RecipeError(f"line {line}: requirement files are not supported")
            elif arg.startswith("-"):
                extra_args.append(arg)
                pending_value = arg in PIP_VALUE_OPTIONS
            else:
                packages.append(arg)
        return LibraryInstallStep(packages=packages, installer=installer, extra_args=extra_args)


def _words(argv: List[str]) -> List[str]:
    """Arguments after the program name that are not options."""
    return [a for a in argv[1:] if not a.startswith("-")]
