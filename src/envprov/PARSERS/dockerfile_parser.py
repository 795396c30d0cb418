"""
Parser for Dockerfiles, turning them into a flat list of instructions.
"""
import json
import re
from typing import List
from ..MODELS.dockerfile_ast import Instruction

_INSTRUCTION = re.compile(r'^([A-Za-z]+)(?:\s+(.*))?$')


class DockerfileParser:
    """
    Parser for Dockerfile instructions.
    """
    def parse(self, dockerfile_path: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a file path.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            List[Instruction]: Instructions in file order.
        """
        with open(dockerfile_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> List[Instruction]:
        """
        Parses a Dockerfile from a string.

        Comment lines are dropped, including those inside a continued
        instruction, and backslash continuations are joined with a space.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            List[Instruction]: Instructions in file order.
        """
        instructions = []
        buffer = []
        start_line = 0

        for number, line in enumerate(content.splitlines(), start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith('#'):
                continue
            if not buffer:
                start_line = number

            if stripped.endswith('\\'):
                buffer.append(stripped[:-1].strip())
                continue
            buffer.append(stripped)
            instructions.append(self._make_instruction(" ".join(p for p in buffer if p), start_line))
            buffer = []

        # Dangling continuation at end of file
        if buffer:
            instructions.append(self._make_instruction(" ".join(p for p in buffer if p), start_line))

        return [i for i in instructions if i is not None]

    def _make_instruction(self, text: str, line: int):
        match = _INSTRUCTION.match(text)
        if not match:
            return None
        keyword = match.group(1).upper()
        args_str = (match.group(2) or "").strip()

        if args_str.startswith('[') and args_str.endswith(']'):
            try:
                args = json.loads(args_str)
            except json.JSONDecodeError:
                args = None
            if isinstance(args, list) and all(isinstance(a, str) for a in args):
                return Instruction(instruction=keyword, arguments=args, raw=text, line=line, exec_form=True)

        return Instruction(
            instruction=keyword,
            arguments=[args_str] if args_str else [],
            raw=text,
            line=line,
        )
