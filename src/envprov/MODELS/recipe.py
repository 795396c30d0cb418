"""
Models for provisioning recipes: a pinned base image plus an ordered list of steps.
"""
import hashlib
import json
import re
from typing import Annotated, List, Dict, Optional, Union, Literal
from pydantic import BaseModel, Field

from ..REGISTRY.image_reference import ImageReference

# Names end up inside `sh -c` strings, so they are restricted to this alphabet.
NAME_PATTERN = r'^[A-Za-z0-9][A-Za-z0-9._+-]*$'

# Distributions whose import name differs from the normalised project name.
IMPORT_NAMES = {
    "beautifulsoup4": "bs4",
    "opencv-python": "cv2",
    "pillow": "PIL",
    "python-dateutil": "dateutil",
    "pyyaml": "yaml",
    "scikit-learn": "sklearn",
    "scikit-image": "skimage",
}


class BaseImage(BaseModel):
    """
    The toolchain image a recipe starts from.
    """
    name: str
    version: Optional[str] = None
    digest: Optional[str] = None

    @classmethod
    def from_reference(cls, reference: str) -> "BaseImage":
        """
        Builds a BaseImage from a reference such as 'rust:1.67'.

        :param reference: Image reference string.
        :return: The base image.
        """
        ref = ImageReference.parse(reference)
        return cls(name=ref.name, version=ref.tag if ref.explicit_tag else None, digest=ref.digest)

    @property
    def reference(self) -> str:
        """Reference as handed to the container engine."""
        if self.digest:
            return f"{self.name}@{self.digest}"
        if self.version:
            return f"{self.name}:{self.version}"
        return self.name

    @property
    def is_pinned(self) -> bool:
        return ImageReference.parse(self.reference).is_pinned


class ComponentStep(BaseModel):
    """
    Adds one component to the toolchain through its own component manager.
    Adding an already installed component is a no-op.
    """
    kind: Literal["component"] = "component"
    component: str = Field(pattern=NAME_PATTERN)
    manager: Literal["rustup"] = "rustup"

    def command(self) -> List[str]:
        return [self.manager, "component", "add", self.component]

    def environment(self) -> Dict[str, str]:
        return {}

    def probe(self) -> Optional[List[str]]:
        # installed entries are `<component>` or `<component>-<target triple>`
        pattern = self.component.replace(".", r"\.").replace("+", r"\+")
        return [
            "sh", "-c",
            f"{self.manager} component list --installed | grep -Eq '^{pattern}(-|$)'",
        ]

    def describe(self) -> str:
        return f"add toolchain component {self.component}"


class SystemPackageStep(BaseModel):
    """
    Refreshes the OS package index and installs exactly one package.

    Both happen in one step so the install always sees the metadata
    fetched immediately before it.
    """
    kind: Literal["system-package"] = "system-package"
    package: str = Field(pattern=NAME_PATTERN)
    manager: Literal["apt-get", "apt"] = "apt-get"

    def command(self) -> List[str]:
        return [
            "sh", "-c",
            f"{self.manager} update && {self.manager} install -y {self.package}",
        ]

    def environment(self) -> Dict[str, str]:
        return {"DEBIAN_FRONTEND": "noninteractive"}

    def probe(self) -> Optional[List[str]]:
        return ["dpkg", "-s", self.package]

    def describe(self) -> str:
        return f"install system package {self.package}"


class LibraryInstallStep(BaseModel):
    """
    Installs a set of libraries with a single installer invocation, so the
    installer resolves their constraints together.
    """
    kind: Literal["libraries"] = "libraries"
    packages: List[str] = []
    installer: Literal["pip3", "pip"] = "pip3"
    extra_args: List[str] = []

    def command(self) -> List[str]:
        """
        The installer call, or an empty list when there is nothing to install.
        """
        if not self.packages:
            return []
        return [self.installer, "install", *self.extra_args, *self.packages]

    def environment(self) -> Dict[str, str]:
        return {}

    @property
    def interpreter(self) -> str:
        return "python3" if self.installer == "pip3" else "python"

    def import_names(self) -> List[str]:
        """
        Module names to import to check the libraries are usable.
        """
        names = []
        for requirement in self.packages:
            project = re.split(r'[<>=!~;\[ @]', requirement, maxsplit=1)[0].strip()
            project = project.lower().replace("_", "-")
            names.append(IMPORT_NAMES.get(project, project.replace("-", "_")))
        return names

    def probe(self) -> Optional[List[str]]:
        if not self.packages:
            return None
        return [self.interpreter, "-c", "import " + ", ".join(self.import_names())]

    def unpinned(self) -> List[str]:
        """Requirements that do not name an exact version."""
        return [p for p in self.packages if "==" not in p and "@" not in p]

    def describe(self) -> str:
        if not self.packages:
            return "install libraries (none)"
        return f"install libraries {' '.join(self.packages)}"


Step = Annotated[
    Union[ComponentStep, SystemPackageStep, LibraryInstallStep],
    Field(discriminator="kind"),
]


class Recipe(BaseModel):
    """
    A complete provisioning recipe. Steps run strictly in list order.
    """
    name: str = "envprov"
    base_image: BaseImage
    steps: List[Step] = []

    def fingerprint(self) -> str:
        """
        sha256 over the canonical JSON form of the base image and steps. The
        name is only a label, so renaming a recipe keeps its fingerprint.
        """
        data = self.model_dump(mode="json", exclude={"name"})
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()

    def unpinned(self) -> List[str]:
        """
        Lists every input that is not pinned to an exact version.

        These are reported, never rewritten: the installed set can drift
        with upstream indexes.
        """
        gaps = []
        if not self.base_image.is_pinned:
            gaps.append(f"base image {self.base_image.reference}")
        for step in self.steps:
            if isinstance(step, LibraryInstallStep):
                gaps.extend(f"library {p}" for p in step.unpinned())
        return gaps


def default_recipe() -> Recipe:
    """
    The Rust toolchain image with rustfmt, pip and the data-analysis stack.
    """
    return Recipe(
        name="rust-data",
        base_image=BaseImage(name="rust", version="1.67"),
        steps=[
            ComponentStep(component="rustfmt"),
            SystemPackageStep(package="python3-pip"),
            LibraryInstallStep(packages=["polars", "pandas", "numpy", "matplotlib"]),
        ],
    )
