"""
Language backend abstraction
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from ..config import ExecutionConfig
from ..models import LANGUAGE_FAMILY, Language, LanguageFamily, ProcessOutcome
from ..workspace import Workspace


@dataclass
class Artifact:
    """What the run phase needs: the source file and the runnable target"""
    source_name: str
    target: str  # binary path, class name or script name
    compiled: bool = False


@dataclass
class CompileOutcome:
    """Result of a compile phase"""
    success: bool
    diagnostics: str
    process: ProcessOutcome


class LanguageBackend(ABC):
    """Strategy implementing prepare/compile/run for one language"""

    language: Language
    source_suffix: str = ''

    # Runtimes that reserve large virtual address ranges opt out of RLIMIT_AS
    limit_address_space: bool = True

    def __init__(self, config: ExecutionConfig):
        self.config = config

    @property
    def family(self) -> LanguageFamily:
        return LANGUAGE_FAMILY[self.language]

    @property
    def needs_compile(self) -> bool:
        return self.family in (LanguageFamily.BYTECODE_COMPILED, LanguageFamily.NATIVELY_COMPILED)

    @abstractmethod
    def prepare(self, code: str, workspace: Workspace) -> Artifact:
        """
        Materialize source code into the workspace

        Args:
            code: Submitted source code
            workspace: Workspace owning the generated files

        Returns:
            Artifact describing the source file and run target
        """
        pass

    def compile_command(self, artifact: Artifact, workspace: Workspace) -> Optional[List[str]]:
        """argv for the compile phase, or None for interpreted languages"""
        return None

    @abstractmethod
    def run_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        """argv for the run phase"""
        pass

    def compile(
        self,
        artifact: Artifact,
        workspace: Workspace,
        runner,
        cancel_event: Optional[threading.Event] = None
    ) -> Optional[CompileOutcome]:
        """
        Run the compile phase

        Returns:
            CompileOutcome, or None when the language has no compile phase
        """
        command = self.compile_command(artifact, workspace)
        if command is None:
            return None

        process = runner(
            command,
            workspace,
            timeout_ms=self.config.compile_timeout_ms,
            cancel_event=cancel_event,
            limit_address_space=False
        )
        success = (
            process.exitCode == 0
            and not process.timedOut
            and not process.outputTruncated
            and not process.cancelled
        )
        if success:
            artifact.compiled = True
        diagnostics = (process.stderr + process.stdout).strip()
        return CompileOutcome(success=success, diagnostics=diagnostics, process=process)

    def run(
        self,
        artifact: Artifact,
        stdin: str,
        workspace: Workspace,
        runner,
        cancel_event: Optional[threading.Event] = None
    ) -> ProcessOutcome:
        """Run the prepared (and compiled) artifact with the given stdin"""
        if self.needs_compile and not artifact.compiled:
            raise RuntimeError(f"{self.language.value} artifact must be compiled before running")
        return runner(
            self.run_command(artifact, workspace),
            workspace,
            stdin=stdin,
            timeout_ms=self.config.run_timeout_ms,
            cancel_event=cancel_event,
            limit_address_space=self.limit_address_space
        )


class NativeBackend(LanguageBackend):
    """Compile to a native executable named from the workspace id"""

    @abstractmethod
    def compiler_args(self, source: str, binary: str) -> List[str]:
        """Compiler argv turning `source` into `binary`"""
        pass

    def prepare(self, code: str, workspace: Workspace) -> Artifact:
        source_name = workspace.artifact_name('main', self.source_suffix)
        workspace.write(source_name, code)
        binary = workspace.artifact_name('prog')
        workspace.track(binary)
        return Artifact(source_name=source_name, target=binary)

    def compile_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        return self.compiler_args(artifact.source_name, artifact.target)

    def run_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        return [f"./{artifact.target}"]
