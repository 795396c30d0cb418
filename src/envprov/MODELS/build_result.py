"""
Models describing the outcome of a provisioning run.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel


class Layer(BaseModel):
    """
    One successfully applied step. `image_id` is None when the step ran
    directly on the host.
    """
    index: int
    step: str
    command: List[str] = []
    image_id: Optional[str] = None
    duration: float = 0.0
    skipped: bool = False


class BuildResult(BaseModel):
    """
    A completed build. Failed builds never produce one.
    """
    recipe_name: str
    fingerprint: str
    base_reference: str
    base_image_id: Optional[str] = None
    image_id: Optional[str] = None
    tag: Optional[str] = None
    layers: List[Layer] = []


class VerificationReport(BaseModel):
    """
    Result of probing a target for every provisioned component.
    """
    target: str
    checks: Dict[str, bool] = {}

    @property
    def ok(self) -> bool:
        return all(self.checks.values())

    @property
    def missing(self) -> List[str]:
        return [label for label, present in self.checks.items() if not present]
