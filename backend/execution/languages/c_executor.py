"""
C language executor
"""

from typing import List

from ..models import Language
from .base import NativeBackend


class CBackend(NativeBackend):
    language = Language.C
    source_suffix = '.c'

    def compiler_args(self, source: str, binary: str) -> List[str]:
        return [self.config.gcc_command, '-O2', '-std=c11', '-o', binary, source, '-lm', '-Wall']
