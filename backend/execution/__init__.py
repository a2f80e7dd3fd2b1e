"""
Sandboxed code execution for interpreted and compiled languages
"""

from .config import ExecutionConfig
from .executor import CodeExecutor, execute_code, get_executor, run_tests
from .models import (
    ErrorKind,
    ExecuteRequest,
    ExecutionResult,
    Language,
    LanguageFamily,
    TestCase,
    TestCaseResult,
    TestRunRequest,
    TestRunResult,
)
from .ratelimit import SlidingWindowRateLimiter

__all__ = [
    'CodeExecutor',
    'ErrorKind',
    'ExecuteRequest',
    'ExecutionConfig',
    'ExecutionResult',
    'Language',
    'LanguageFamily',
    'SlidingWindowRateLimiter',
    'TestCase',
    'TestCaseResult',
    'TestRunRequest',
    'TestRunResult',
    'execute_code',
    'get_executor',
    'run_tests',
]
