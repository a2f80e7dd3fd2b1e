"""
Pattern-based screening of submitted source code

This is a heuristic denylist, not an isolation boundary. Anything that slips
through is still bounded by the process supervisor's timeout and output limits.
"""

import re
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .models import LANGUAGE_FAMILY, Language, LanguageFamily

logger = logging.getLogger(__name__)


class ThreatCategory(str, Enum):
    FILESYSTEM = 'filesystem'
    PROCESS = 'process'
    NETWORK = 'network'
    DYNAMIC_EVAL = 'dynamic_eval'
    REFLECTION = 'reflection'


@dataclass(frozen=True)
class ScanResult:
    allowed: bool
    category: Optional[ThreatCategory] = None
    reason: Optional[str] = None


ALLOWED = ScanResult(allowed=True)

_PY_MODULE_IMPORT = r'(?:^|[\s;])(?:import|from)\s+(?:[\w.]+\s*,\s*)*{module}\b'


def _py_import(*modules: str) -> List[str]:
    return [_PY_MODULE_IMPORT.format(module=re.escape(m)) for m in modules]


_Rule = Tuple[ThreatCategory, str]

_DENYLIST_SOURCE: Dict[LanguageFamily, List[_Rule]] = {
    LanguageFamily.DYNAMIC_SCRIPTING: (
        [(ThreatCategory.FILESYSTEM, p) for p in _py_import('os', 'shutil', 'pathlib', 'io', 'tempfile', 'glob', 'fileinput')]
        + [
            (ThreatCategory.FILESYSTEM, r'\bopen\s*\('),
        ]
        + [(ThreatCategory.PROCESS, p) for p in _py_import('subprocess', 'sys', 'multiprocessing', 'signal', 'pty', 'threading', 'ctypes', 'resource')]
        + [(ThreatCategory.NETWORK, p) for p in _py_import('socket', 'urllib', 'http', 'requests', 'ssl', 'asyncio', 'ftplib', 'smtplib')]
        + [
            (ThreatCategory.DYNAMIC_EVAL, r'\beval\s*\('),
            (ThreatCategory.DYNAMIC_EVAL, r'\bexec\s*\('),
            (ThreatCategory.DYNAMIC_EVAL, r'(?<![\w.])compile\s*\('),
            (ThreatCategory.DYNAMIC_EVAL, r'__import__'),
        ]
        + [(ThreatCategory.DYNAMIC_EVAL, p) for p in _py_import('importlib', 'code', 'codeop', 'runpy', 'pickle', 'marshal')]
        + [
            (ThreatCategory.REFLECTION, r'__(?:builtins|subclasses|globals|code|class|bases|mro|dict|loader|spec)__'),
            (ThreatCategory.REFLECTION, r'\b(?:globals|locals|vars|getattr|setattr|delattr)\s*\('),
        ]
        + [(ThreatCategory.REFLECTION, p) for p in _py_import('inspect', 'gc', 'builtins')]
    ),
    LanguageFamily.SCRIPT: [
        (ThreatCategory.PROCESS, r'\brequire\s*\('),
        (ThreatCategory.PROCESS, r'\bprocess\s*\.'),
        (ThreatCategory.PROCESS, r'child_process'),
        (ThreatCategory.FILESYSTEM, r'\bfs\s*\.'),
        (ThreatCategory.FILESYSTEM, r'\bBuffer\s*\.'),
        (ThreatCategory.NETWORK, r'\b(?:fetch|XMLHttpRequest|WebSocket)\s*\('),
        (ThreatCategory.DYNAMIC_EVAL, r'\beval\s*\('),
        (ThreatCategory.DYNAMIC_EVAL, r'\bFunction\s*\('),
        (ThreatCategory.DYNAMIC_EVAL, r'\bimport\s*\('),
        (ThreatCategory.DYNAMIC_EVAL, r'^\s*import\s+'),
        (ThreatCategory.DYNAMIC_EVAL, r'\bset(?:Timeout|Interval)\s*\(\s*[\'"`]'),
        (ThreatCategory.REFLECTION, r'\bglobal(?:This)?\s*\.'),
        (ThreatCategory.REFLECTION, r'constructor\s*\.\s*constructor'),
        (ThreatCategory.REFLECTION, r'__proto__'),
    ],
    LanguageFamily.BYTECODE_COMPILED: [
        (ThreatCategory.PROCESS, r'\bRuntime\s*\.\s*getRuntime\b'),
        (ThreatCategory.PROCESS, r'\bProcessBuilder\b'),
        (ThreatCategory.PROCESS, r'\bProcessHandle\b'),
        (ThreatCategory.PROCESS, r'\bSystem\s*\.\s*(?:exit|load|loadLibrary|setSecurityManager)\s*\('),
        (ThreatCategory.FILESYSTEM, r'\bjava\s*\.\s*nio\s*\.\s*file\b'),
        (ThreatCategory.FILESYSTEM, r'\b(?:File|Files|Paths|FileInputStream|FileOutputStream|FileReader|FileWriter|RandomAccessFile)\b'),
        (ThreatCategory.NETWORK, r'\bjava\s*\.\s*net\b'),
        (ThreatCategory.NETWORK, r'\b(?:Server)?Socket\b'),
        (ThreatCategory.NETWORK, r'\b(?:URL|HttpURLConnection|HttpClient)\b'),
        (ThreatCategory.DYNAMIC_EVAL, r'\bScriptEngine(?:Manager)?\b'),
        (ThreatCategory.DYNAMIC_EVAL, r'\b(?:JavaCompiler|ToolProvider)\b'),
        (ThreatCategory.REFLECTION, r'\bjava\s*\.\s*lang\s*\.\s*reflect\b'),
        (ThreatCategory.REFLECTION, r'\bClass\s*\.\s*forName\s*\('),
        (ThreatCategory.REFLECTION, r'\.\s*(?:getDeclared\w*|setAccessible|getMethod|getField|invoke)\s*\('),
        (ThreatCategory.REFLECTION, r'\bsun\s*\.\s*misc\b'),
        (ThreatCategory.REFLECTION, r'\bClassLoader\b'),
    ],
    LanguageFamily.NATIVELY_COMPILED: [
        # C and C++
        (ThreatCategory.PROCESS, r'\bsystem\s*\('),
        (ThreatCategory.PROCESS, r'\b(?:popen|fork|vfork|execl|execlp|execle|execv|execvp|execvpe|posix_spawn|kill|ptrace)\s*\('),
        (ThreatCategory.PROCESS, r'#\s*include\s*[<"](?:unistd\.h|sys/wait\.h|spawn\.h|signal\.h|sys/ptrace\.h|windows\.h)[>"]'),
        (ThreatCategory.FILESYSTEM, r'\b(?:fopen|freopen|open|creat|unlink|rename|rmdir|mkdir|opendir)\s*\('),
        (ThreatCategory.FILESYSTEM, r'\b(?:ifstream|ofstream|fstream|filesystem)\b'),
        (ThreatCategory.FILESYSTEM, r'#\s*include\s*[<"](?:fcntl\.h|dirent\.h|sys/stat\.h|fstream|filesystem)[>"]'),
        (ThreatCategory.NETWORK, r'#\s*include\s*[<"](?:sys/socket\.h|netinet/\w+\.h|arpa/\w+\.h|netdb\.h|winsock2?\.h)[>"]'),
        (ThreatCategory.NETWORK, r'\bsocket\s*\('),
        (ThreatCategory.DYNAMIC_EVAL, r'\b(?:dlopen|dlsym|mmap|mprotect)\s*\('),
        (ThreatCategory.DYNAMIC_EVAL, r'\b(?:__asm__|asm)\b'),
        (ThreatCategory.REFLECTION, r'#\s*include\s*[<"]dlfcn\.h[>"]'),
        # Rust
        (ThreatCategory.PROCESS, r'\bstd\s*::\s*process\b'),
        (ThreatCategory.PROCESS, r'\bCommand\s*::\s*new\b'),
        (ThreatCategory.FILESYSTEM, r'\bstd\s*::\s*(?:fs|path|os)\b'),
        (ThreatCategory.NETWORK, r'\bstd\s*::\s*net\b'),
        (ThreatCategory.DYNAMIC_EVAL, r'\bunsafe\b'),
        (ThreatCategory.DYNAMIC_EVAL, r'\b(?:extern\s+crate|libc)\b'),
        (ThreatCategory.REFLECTION, r'\bstd\s*::\s*(?:mem\s*::\s*transmute|ptr)\b'),
    ],
}

DENYLIST: Dict[LanguageFamily, List[Tuple[ThreatCategory, re.Pattern]]] = {
    family: [(category, re.compile(pattern, re.MULTILINE)) for category, pattern in rules]
    for family, rules in _DENYLIST_SOURCE.items()
}


def scan(code: str, language: Language) -> ScanResult:
    """
    Screen source code against the denylist for its language family

    Args:
        code: Submitted source code
        language: Language the code is written in

    Returns:
        ScanResult; `allowed` is False on the first matching pattern
    """
    family = LANGUAGE_FAMILY[language]
    for category, pattern in DENYLIST.get(family, []):
        match = pattern.search(code)
        if match:
            snippet = match.group(0).strip()
            logger.info(f"Rejected {language.value} submission: {category.value} pattern {snippet!r}")
            return ScanResult(
                allowed=False,
                category=category,
                reason=f"Security violation: {category.value} access is not allowed ({snippet})"
            )
    return ALLOWED
