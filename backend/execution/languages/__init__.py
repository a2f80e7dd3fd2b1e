"""
Language-specific executors
"""

from typing import Dict, Type

from ..config import ExecutionConfig
from ..models import Language, resolve_language
from .base import Artifact, CompileOutcome, LanguageBackend
from .c_executor import CBackend
from .cpp_executor import CppBackend
from .java_executor import JavaBackend
from .javascript_executor import JavaScriptBackend
from .python_executor import PythonBackend
from .rust_executor import RustBackend

BACKENDS: Dict[Language, Type[LanguageBackend]] = {
    Language.JAVASCRIPT: JavaScriptBackend,
    Language.PYTHON: PythonBackend,
    Language.JAVA: JavaBackend,
    Language.CPP: CppBackend,
    Language.C: CBackend,
    Language.RUST: RustBackend,
}

# Every Language member must have a backend
assert set(BACKENDS) == set(Language), 'languages without a backend'


def get_backend(language, config: ExecutionConfig) -> LanguageBackend:
    """
    Instantiate the backend for a language (or language family)

    Raises:
        ValueError: If the language is not supported
    """
    return BACKENDS[resolve_language(language)](config)


__all__ = [
    'Artifact',
    'BACKENDS',
    'CompileOutcome',
    'LanguageBackend',
    'get_backend',
]
