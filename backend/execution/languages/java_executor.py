"""
Java language executor

javac requires a public class to live in a file of the same name and `java`
needs the class to launch, so the entry point is worked out from the source
before anything is written.
"""

import re
from typing import List

from ..models import Language
from ..workspace import Workspace
from .base import Artifact, LanguageBackend

PUBLIC_CLASS = re.compile(r'\bpublic\s+(?:(?:final|abstract|strictfp)\s+)*class\s+([A-Za-z_][A-Za-z0-9_]*)')
ANY_CLASS = re.compile(r'\bclass\s+([A-Za-z_][A-Za-z0-9_]*)')
MAIN_METHOD = re.compile(r'\bstatic\s+(?:final\s+)?void\s+main\s*\(')
IMPORT_LINE = re.compile(r'^\s*import\s+(?:static\s+)?[\w.]+(?:\.\*)?\s*;\s*$')


def find_entry_class(code: str):
    """
    Name of the class `java` should launch, or None if the source needs wrapping

    A public class wins; otherwise the last class declared before `main`.
    """
    match = PUBLIC_CLASS.search(code)
    if match:
        return match.group(1)

    main = MAIN_METHOD.search(code)
    if not main:
        return None
    candidates = [m for m in ANY_CLASS.finditer(code) if m.start() < main.start()]
    if candidates:
        return candidates[-1].group(1)
    return None


def wrap_source(code: str, class_name: str) -> str:
    """
    Put bare Java into a class named `class_name`.

    Code that declares main becomes the class body; plain statements become
    the body of main. Leading import lines are hoisted out of the class.
    """
    lines = code.splitlines()
    imports = []
    while lines and (IMPORT_LINE.match(lines[0]) or not lines[0].strip()):
        line = lines.pop(0)
        if line.strip():
            imports.append(line.strip())
    body = '\n'.join(lines)

    if MAIN_METHOD.search(body):
        wrapped = f"public class {class_name} {{\n{body}\n}}\n"
    else:
        wrapped = (
            f"public class {class_name} {{\n"
            f"    public static void main(String[] args) throws Exception {{\n"
            f"{body}\n"
            f"    }}\n"
            f"}}\n"
        )
    header = '\n'.join(imports)
    return f"{header}\n{wrapped}" if header else wrapped


class JavaBackend(LanguageBackend):
    language = Language.JAVA
    source_suffix = '.java'
    limit_address_space = False

    def prepare(self, code: str, workspace: Workspace) -> Artifact:
        class_name = find_entry_class(code)
        if class_name is None:
            class_name = workspace.artifact_name('Main')
            code = wrap_source(code, class_name)

        if PUBLIC_CLASS.search(code):
            # javac insists on <PublicClass>.java
            source_name = f"{PUBLIC_CLASS.search(code).group(1)}{self.source_suffix}"
        else:
            source_name = workspace.artifact_name('Main', self.source_suffix)

        workspace.write(source_name, code)
        workspace.track(f"{class_name}.class")
        return Artifact(source_name=source_name, target=class_name)

    def _jvm_flags(self) -> List[str]:
        heap_mb = max(32, min(256, self.config.memory_limit_mb or 256))
        return [f"-Xmx{heap_mb}m", "-XX:+UseSerialGC", "-XX:TieredStopAtLevel=1"]

    def compile_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        return (
            [self.config.javac_command]
            + [f"-J{flag}" for flag in self._jvm_flags()]
            + ['-encoding', 'UTF-8', '-d', '.', artifact.source_name]
        )

    def run_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        return [self.config.java_command] + self._jvm_flags() + ['-cp', '.', artifact.target]
