"""
Rust language executor
"""

from typing import List

from ..models import Language
from .base import NativeBackend


class RustBackend(NativeBackend):
    language = Language.RUST
    source_suffix = '.rs'

    def compiler_args(self, source: str, binary: str) -> List[str]:
        # Single-file programs only; no Cargo projects
        return [self.config.rustc_command, '-O', '--edition', '2021', '-o', binary, source]
