from typing import List

import pytest

from interpreter import Interpreter
from parser import parse


@pytest.fixture
def outputs() -> List[str]:
    return []


@pytest.fixture
def make_interpreter(outputs):
    def factory(**kwargs) -> Interpreter:
        kwargs.setdefault("output_sink", outputs.append)
        kwargs.setdefault("diagnostic_sink", lambda text: None)
        kwargs.setdefault("sleep", lambda seconds: None)
        return Interpreter(**kwargs)

    return factory


@pytest.fixture
def brew(make_interpreter, outputs):
    """Parse and run a program, returning everything it printed."""

    def run(source: str, **kwargs) -> List[str]:
        result = parse(source)
        assert result.ok, result.errors
        interpreter = make_interpreter(**kwargs)
        interpreter.run(result.statements)
        return outputs

    return run
