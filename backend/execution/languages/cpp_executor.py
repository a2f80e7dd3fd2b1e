"""
C++ language executor
"""

from typing import List

from ..models import Language
from .base import NativeBackend


class CppBackend(NativeBackend):
    language = Language.CPP
    source_suffix = '.cpp'

    def compiler_args(self, source: str, binary: str) -> List[str]:
        return [self.config.gpp_command, '-O2', '-std=c++17', '-o', binary, source, '-Wall']
