"""
Pydantic models for code execution
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class LanguageFamily(str, Enum):
    """How a language turns source into something runnable"""
    SCRIPT = 'script'
    DYNAMIC_SCRIPTING = 'dynamic-scripting'
    BYTECODE_COMPILED = 'bytecode-compiled'
    NATIVELY_COMPILED = 'natively-compiled'


class Language(str, Enum):
    """Supported languages for server-side execution"""
    JAVASCRIPT = 'javascript'
    PYTHON = 'python'
    JAVA = 'java'
    CPP = 'cpp'
    C = 'c'
    RUST = 'rust'


LANGUAGE_FAMILY = {
    Language.JAVASCRIPT: LanguageFamily.SCRIPT,
    Language.PYTHON: LanguageFamily.DYNAMIC_SCRIPTING,
    Language.JAVA: LanguageFamily.BYTECODE_COMPILED,
    Language.CPP: LanguageFamily.NATIVELY_COMPILED,
    Language.C: LanguageFamily.NATIVELY_COMPILED,
    Language.RUST: LanguageFamily.NATIVELY_COMPILED,
}

# A request may name a family instead of a concrete language
DEFAULT_LANGUAGE_FOR_FAMILY = {
    LanguageFamily.SCRIPT: Language.JAVASCRIPT,
    LanguageFamily.DYNAMIC_SCRIPTING: Language.PYTHON,
    LanguageFamily.BYTECODE_COMPILED: Language.JAVA,
    LanguageFamily.NATIVELY_COMPILED: Language.CPP,
}

_LANGUAGE_ALIASES = {
    'js': Language.JAVASCRIPT,
    'node': Language.JAVASCRIPT,
    'py': Language.PYTHON,
    'python3': Language.PYTHON,
    'c++': Language.CPP,
    'rs': Language.RUST,
}


def resolve_language(value) -> Language:
    """
    Resolve a wire value (language, alias or family) to a Language

    Raises:
        ValueError: If the value names nothing we can run
    """
    if isinstance(value, Language):
        return value
    if isinstance(value, LanguageFamily):
        return DEFAULT_LANGUAGE_FOR_FAMILY[value]

    key = str(value).strip().lower()
    try:
        return Language(key)
    except ValueError:
        pass
    if key in _LANGUAGE_ALIASES:
        return _LANGUAGE_ALIASES[key]
    try:
        return DEFAULT_LANGUAGE_FOR_FAMILY[LanguageFamily(key)]
    except ValueError:
        raise ValueError(f'Unsupported language: {value}')


class ErrorKind(str, Enum):
    """Why an execution did not succeed"""
    SECURITY_VIOLATION = 'security_violation'
    COMPILE_ERROR = 'compile_error'
    TIMEOUT = 'timeout'
    OUTPUT_LIMIT_EXCEEDED = 'output_limit_exceeded'
    RUNTIME_ERROR = 'runtime_error'
    INTERNAL_ERROR = 'internal_error'
    INVALID_REQUEST = 'invalid_request'


class ExecuteRequest(BaseModel):
    """Request to execute code once"""
    model_config = ConfigDict(frozen=True)

    language: Language
    code: str = Field(min_length=1, max_length=10000)
    input: str = Field(default='', max_length=1000)

    @field_validator('language', mode='before')
    @classmethod
    def coerce_language(cls, value):
        return resolve_language(value)

    @field_validator('input', mode='before')
    @classmethod
    def coerce_input(cls, value):
        return '' if value is None else value


class TestCase(BaseModel):
    """A single input/expected-output pair"""
    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    input: str = ''
    expectedOutput: str
    hidden: bool = False


class TestRunRequest(BaseModel):
    """Request to run code against test cases"""
    __test__ = False

    model_config = ConfigDict(frozen=True)

    language: Language
    code: str = Field(min_length=1, max_length=10000)
    testCases: List[TestCase] = Field(min_length=1)

    @field_validator('language', mode='before')
    @classmethod
    def coerce_language(cls, value):
        return resolve_language(value)


class ExecutionResult(BaseModel):
    """Outcome of one execution"""
    success: bool
    output: str = ''
    error: Optional[str] = None
    executionTime: int = 0  # milliseconds
    errorKind: Optional[ErrorKind] = None

    @model_validator(mode='after')
    def check_consistency(self):
        if self.success != (self.errorKind is None):
            raise ValueError('success must be true exactly when errorKind is unset')
        return self

    @classmethod
    def ok(cls, output: str, execution_time: int) -> 'ExecutionResult':
        return cls(success=True, output=output, executionTime=execution_time)

    @classmethod
    def failure(
        cls,
        kind: ErrorKind,
        error: str,
        output: str = '',
        execution_time: int = 0
    ) -> 'ExecutionResult':
        return cls(
            success=False,
            output=output,
            error=error,
            executionTime=execution_time,
            errorKind=kind
        )


class TestCaseResult(BaseModel):
    """Verdict for one test case"""
    __test__ = False

    testCase: int  # 1-based position in the submitted list
    input: str
    expectedOutput: str
    actualOutput: str
    passed: bool
    error: Optional[str] = None
    errorKind: Optional[ErrorKind] = None
    executionTime: int = 0
    hidden: bool = False


class TestRunResult(BaseModel):
    """Aggregated verdicts for a test run"""
    __test__ = False

    success: bool
    passedTests: int
    totalTests: int
    allPassed: bool
    results: List[TestCaseResult]

    @model_validator(mode='after')
    def check_counts(self):
        if self.totalTests != len(self.results):
            raise ValueError('totalTests must equal the number of results')
        if not 0 <= self.passedTests <= self.totalTests:
            raise ValueError('passedTests must be between 0 and totalTests')
        if self.allPassed != (self.passedTests == self.totalTests):
            raise ValueError('allPassed must reflect passedTests == totalTests')
        return self

    @classmethod
    def from_results(cls, results: List[TestCaseResult]) -> 'TestRunResult':
        passed = sum(1 for r in results if r.passed)
        return cls(
            success=passed > 0,
            passedTests=passed,
            totalTests=len(results),
            allPassed=passed == len(results),
            results=results
        )


class ProcessOutcome(BaseModel):
    """Raw result of one supervised process"""
    stdout: str = ''
    stderr: str = ''
    exitCode: Optional[int] = None
    elapsedMs: int = 0
    timedOut: bool = False
    outputTruncated: bool = False
    cancelled: bool = False


class ExecutionState(str, Enum):
    """Lifecycle of a single execution"""
    VALIDATING = 'validating'
    REJECTED = 'rejected'
    ADMITTED = 'admitted'
    COMPILING = 'compiling'
    COMPILE_FAILED = 'compile_failed'
    COMPILED = 'compiled'
    RUNNING = 'running'
    COMPLETED = 'completed'
    TIMED_OUT = 'timed_out'
    CRASHED = 'crashed'
    OUTPUT_LIMIT_EXCEEDED = 'output_limit_exceeded'
    CLEANING_UP = 'cleaning_up'
    RESULT_EMITTED = 'result_emitted'
