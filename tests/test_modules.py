import pytest

from interpreter import BrewcoRuntimeError
from parser import parse


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def _run_file(make_interpreter, path):
    source = path.read_text(encoding="utf-8")
    result = parse(source, str(path))
    assert result.ok, result.errors
    interpreter = make_interpreter(filename=str(path))
    interpreter.run(result.statements)
    return interpreter


def test_grind_exposes_top_level_bindings(tmp_path, make_interpreter, outputs):
    _write(tmp_path / "util.brewco", 'beans greeting pour_in "hello"\nbrew shout(x) { serve foam_up(x) }\npourout "loading"\n')
    main = _write(
        tmp_path / "main.brewco",
        'beans util pour_in grind "util.brewco"\npourout util.greeting\npourout util.shout("hi")\npourout util\n',
    )
    _run_file(make_interpreter, main)
    assert outputs == ["loading", "hello", "HI", "Object(Module)"]


def test_modules_resolve_relative_to_the_importing_file(tmp_path, make_interpreter, outputs):
    (tmp_path / "lib").mkdir()
    _write(tmp_path / "lib" / "inner.brewco", "beans depth pour_in 2\n")
    _write(tmp_path / "lib" / "outer.brewco", 'beans inner pour_in grind "inner.brewco"\nbeans depth pour_in inner.depth add 1\n')
    main = _write(tmp_path / "main.brewco", 'pourout grind "lib/outer.brewco".depth\n')
    _run_file(make_interpreter, main)
    assert outputs == ["3"]


def test_missing_module(tmp_path, make_interpreter):
    main = _write(tmp_path / "main.brewco", 'beans m pour_in grind "nope.brewco"\n')
    with pytest.raises(BrewcoRuntimeError, match="Could not read module file 'nope.brewco'"):
        _run_file(make_interpreter, main)


def test_module_with_parse_errors(tmp_path, make_interpreter):
    _write(tmp_path / "broken.brewco", "beans pour_in 1\n")
    main = _write(tmp_path / "main.brewco", 'beans m pour_in grind "broken.brewco"\n')
    with pytest.raises(BrewcoRuntimeError, match="Errors parsing module 'broken.brewco'"):
        _run_file(make_interpreter, main)


def test_module_runtime_error_can_be_caught(tmp_path, make_interpreter, outputs):
    _write(tmp_path / "bad.brewco", "beans z pour_in 1 pourop 0\n")
    main = _write(
        tmp_path / "main.brewco",
        'taste_carefully { beans m pour_in grind "bad.brewco" } if_spilled (e) { pourout e }\n',
    )
    _run_file(make_interpreter, main)
    assert outputs == ["Error in module 'bad.brewco': Division by zero!"]


def test_import_cycle_fails_fast(tmp_path, make_interpreter):
    _write(tmp_path / "a.brewco", 'beans b pour_in grind "b.brewco"\n')
    _write(tmp_path / "b.brewco", 'beans a pour_in grind "a.brewco"\n')
    with pytest.raises(BrewcoRuntimeError, match="import cycle detected") as excinfo:
        interpreter = make_interpreter(filename=str(tmp_path / "a.brewco"))
        interpreter.run(parse((tmp_path / "a.brewco").read_text(encoding="utf-8"), str(tmp_path / "a.brewco")).statements)
    assert "Error in module 'b.brewco'" in excinfo.value.message


def test_self_import_is_a_cycle(tmp_path, make_interpreter):
    main = _write(tmp_path / "self.brewco", 'beans me pour_in grind "self.brewco"\n')
    with pytest.raises(BrewcoRuntimeError, match="Cannot grind 'self.brewco': import cycle detected"):
        _run_file(make_interpreter, main)


def test_same_module_can_be_ground_twice(tmp_path, make_interpreter, outputs):
    _write(tmp_path / "shared.brewco", "beans n pour_in 1\n")
    main = _write(
        tmp_path / "main.brewco",
        'beans a pour_in grind "shared.brewco"\nbeans b pour_in grind "shared.brewco"\npourout a.n add b.n\n',
    )
    interpreter = _run_file(make_interpreter, main)
    assert outputs == ["2"]
    assert interpreter.loading_modules == set()
