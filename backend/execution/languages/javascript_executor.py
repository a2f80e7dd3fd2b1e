"""
JavaScript language executor

The submitted program runs in a fresh `vm` context: no require, process,
Buffer or globals from the host. stdin is exposed as `input` and console
output is forwarded to the real stdout. If nothing was logged, the value of
the last expression is printed instead.
"""

import json
from typing import List

from ..models import Language
from ..workspace import Workspace
from .base import Artifact, LanguageBackend

_WRAPPER = '''\
'use strict';
const vm = require('vm');
const util = require('util');

let input = '';
try {{
  input = require('fs').readFileSync(0, 'utf8');
}} catch (e) {{
  input = '';
}}

let logged = false;
const write = (stream) => (...args) => {{
  logged = true;
  stream.write(util.format(...args) + '\\n');
}};

const sandbox = {{
  input,
  console: {{
    log: write(process.stdout),
    info: write(process.stdout),
    warn: write(process.stderr),
    error: write(process.stderr),
  }},
}};

const result = vm.runInNewContext({source}, sandbox, {{ filename: 'main.js' }});
if (!logged && result !== undefined) {{
  process.stdout.write(String(result) + '\\n');
}}
'''


def wrap_source(code: str) -> str:
    return _WRAPPER.format(source=json.dumps(code))


class JavaScriptBackend(LanguageBackend):
    language = Language.JAVASCRIPT
    source_suffix = '.js'
    limit_address_space = False

    def prepare(self, code: str, workspace: Workspace) -> Artifact:
        if self.config.wrap_interpreted_source:
            code = wrap_source(code)
        source_name = workspace.artifact_name('main', self.source_suffix)
        workspace.write(source_name, code)
        return Artifact(source_name=source_name, target=source_name)

    def run_command(self, artifact: Artifact, workspace: Workspace) -> List[str]:
        return [self.config.node_command, artifact.target]
