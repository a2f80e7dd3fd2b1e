"""
Python language executor
"""

from typing import List

from ..models import Language
from ..workspace import Workspace
from .base import Artifact, LanguageBackend

# Inert stand-ins replace these built-ins in the submitted program's namespace
BLOCKED_BUILTINS = ('open', 'exec', 'eval', 'compile', 'breakpoint', 'help', 'exit', 'quit')
BLOCKED_MODULES = (
    'os', 'sys', 'subprocess', 'shutil', 'socket', 'ctypes', 'importlib',
    'multiprocessing', 'pathlib', 'signal', 'pty', 'io', 'builtins',
)

_WRAPPER = '''\
import builtins as _builtins

_BLOCKED_MODULES = {blocked_modules!r}
_real_import = _builtins.__import__


def _stand_in(name):
    def _blocked(*args, **kwargs):
        raise PermissionError(name + "() is not available")
    return _blocked


def _guarded_import(name, *args, **kwargs):
    if name.split(".")[0] in _BLOCKED_MODULES:
        raise ImportError("import of " + name + " is not allowed")
    return _real_import(name, *args, **kwargs)


_safe_builtins = dict(vars(_builtins))
for _name in {blocked_builtins!r}:
    _safe_builtins[_name] = _stand_in(_name)
_safe_builtins["__import__"] = _guarded_import

_code = compile({source!r}, "main.py", "exec")
del _builtins, _name
exec(_code, {{"__name__": "__main__", "__builtins__": _safe_builtins}})
'''


def wrap_source(code: str) -> str:
    return _WRAPPER.format(
        blocked_modules=BLOCKED_MODULES,
        blocked_builtins=BLOCKED_BUILTINS,
        source=code
    )


class PythonBackend(LanguageBackend):
    language = Language.PYTHON
    source_suffix = '.py'

    def prepare(self, code: str, workspace: Workspace) -> Artifact:
        if self.config.wrap_interpreted_source:
            code = wrap_source(code)
        source_name = workspace.artifact_name('main', self.source_suffix)
        workspace.write(source_name, code)
        return Artifact(source_name=source_name, target=source_name)

    def run_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        # -I: ignore PYTHON* env and user site, -B: no .pyc files
        return [self.config.python_command, '-I', '-B', artifact.target]
