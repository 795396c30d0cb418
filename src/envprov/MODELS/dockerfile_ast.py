"""
Models for parsed Dockerfile instructions.
"""
from typing import List
from pydantic import BaseModel


class Instruction(BaseModel):
    """
    One Dockerfile instruction after comment removal and line joining.

    `exec_form` is set when the arguments were written as a JSON array.
    """
    instruction: str
    arguments: List[str]
    raw: str
    line: int = 0
    exec_form: bool = False

    def commands(self) -> List[str]:
        """
        Splits a shell-form RUN into the commands chained with `&&`.
        """
        if self.exec_form:
            return []
        return [c.strip() for c in " ".join(self.arguments).split("&&") if c.strip()]
