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
Synchronous execution of provisioning commands.
"""
import logging
import os
import subprocess
from typing import List, Dict, Optional
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Exit status shells use for "command not found"
NOT_FOUND = 127


@dataclass
class CommandResult:
    """Exit status and, when captured, output of one command."""
    argv: List[str]
    exit_code: int
    stdout: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """
    Runs one command at a time and blocks until it exits.
    """
    def __init__(self, base_env: Optional[Dict[str, str]] = None):
        """
        Initializes the command runner.

        Args:
            base_env (Optional[Dict[str, str]]): Environment every command starts from.
                Defaults to the current process environment.
        """
        self.base_env = dict(os.environ) if base_env is None else dict(base_env)

    def run(self,
            argv: List[str],
            env: Optional[Dict[str, str]] = None,
            capture: bool = False,
            quiet: bool = False) -> CommandResult:
        """
        Runs a command to completion.

        Output goes straight to this process's stdout/stderr unless `capture`
        (stdout returned, stderr still inherited) or `quiet` (both discarded).

        Args:
            argv (List[str]): Command and arguments to execute.
            env (Optional[Dict[str, str]]): Variables added on top of the base environment.
            capture (bool): Return stdout instead of printing it.
            quiet (bool): Discard all output.

        Returns:
            CommandResult: The exit status.
        """
        if not argv:
            raise ValueError("Empty command")

        merged_env = dict(self.base_env)
        if env:
            merged_env.update(env)

        stdout = None
        stderr = None
        if capture:
            stdout = subprocess.PIPE
        if quiet:
            stdout = subprocess.DEVNULL
            stderr = subprocess.DEVNULL

        logger.debug("Running: %s", " ".join(argv))
        try:
            completed = subprocess.run(
                argv,
                env=merged_env,
                stdout=stdout,
                stderr=stderr,
                text=True,
                # Arguments are never re-parsed by a shell (CWE-78)
                shell=False,
                check=False,
            )
        except FileNotFoundError:
            logger.error("Command not found: %s", argv[0])
            return CommandResult(argv=argv, exit_code=NOT_FOUND)

        return CommandResult(
            argv=argv,
            exit_code=completed.returncode,
            stdout=(completed.stdout or "") if capture else "",
        )
