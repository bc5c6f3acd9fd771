import json

import pytest

from interpreter import BrewcoRuntimeError, TracebackFormatter
from parser import parse


def _run_expecting_error(make_interpreter, source, **kwargs):
    result = parse(source)
    assert result.ok, result.errors
    interpreter = make_interpreter(**kwargs)
    with pytest.raises(BrewcoRuntimeError) as excinfo:
        interpreter.run(result.statements)
    return interpreter, excinfo.value


def test_addition_of_variables(brew):
    assert brew("beans x pour_in 10\nbeans y pour_in 3\npourout x add y") == ["13"]


def test_if_otherwise(brew):
    assert brew('taste 1 more_caffeine 2 { pourout "yes" } otherwise { pourout "no" }') == ["no"]


def test_method_mutates_a_snapshot_of_this(brew):
    source = """
bean Counter {
    count pour_in 0
    brew bump() {
        this.count pour_in this.count add 1
    }
}
beans c pour_in new Counter()
c.bump()
pourout c.count
"""
    assert brew(source) == ["0"]


def test_method_can_hand_back_the_updated_instance(brew):
    source = """
bean Counter {
    count pour_in 0
    brew bumped() {
        this.count pour_in this.count add 1
        serve this
    }
}
beans c pour_in new Counter()
c pour_in c.bumped()
c pour_in c.bumped()
pourout c.count
"""
    assert brew(source) == ["2"]


def test_foreach_prints_in_order(brew):
    assert brew("pour n in [1,2,3] { pourout n }") == ["1", "2", "3"]


def test_division_by_zero_is_caught(brew):
    source = """
taste_carefully {
    beans z pour_in 5 pourop 0
    pourout "unreachable"
} if_spilled (err) {
    pourout err
}
pourout "after"
"""
    assert brew(source) == ["Division by zero!", "after"]


def test_uncaught_division_by_zero(make_interpreter):
    _, error = _run_expecting_error(make_interpreter, "beans z pour_in 5 pourop 0")
    assert error.message == "Division by zero!"
    assert error.step_index is not None


def test_roast_default_arm(brew):
    assert brew('roast 2 {\n  1: pourout "one"\n  otherwise: pourout "other"\n}') == ["other"]


def test_roast_first_match_without_fallthrough(brew):
    source = 'roast "b" {\n  "a": pourout 1\n  "b": pourout 2\n  "b": pourout 3\n  otherwise: pourout 4\n}'
    assert brew(source) == ["2"]


def test_roast_never_matches_across_kinds(brew):
    assert brew('roast "1" {\n  1: pourout "number"\n  otherwise: pourout "string"\n}') == ["string"]


def test_arrays_are_copied_on_assignment(brew):
    source = "beans a pour_in [1, 2, 3]\nbeans b pour_in a\nb[0] pour_in 99\npourout a[0]\npourout b[0]"
    assert brew(source) == ["1", "99"]


def test_objects_are_copied_into_functions(brew):
    source = """
beans order pour_in {size: 1}
brew grow(o) {
    o.size pour_in 5
    serve o.size
}
pourout grow(order)
pourout order.size
"""
    assert brew(source) == ["5", "1"]


def test_nested_container_assignment_writes_back(brew):
    source = "beans grid pour_in [[1, 2], [3, 4]]\ngrid[1][0] pour_in 7\npourout grid[1]"
    assert brew(source) == ["74"]


def test_malformed_statement_between_valid_ones(make_interpreter, outputs):
    result = parse('pourout "first"\nbeans pour_in 5\npourout "last"\n')
    assert len(result.diagnostics) == 1
    make_interpreter().run(result.statements)
    assert outputs == ["first", "last"]


def test_for_loop_scope_is_discarded(make_interpreter, outputs):
    result = parse("pour beans i pour_in 0; i less_caffeine 3; i pour_in i add 1 {\n  pourout i\n}")
    interpreter = make_interpreter()
    interpreter.run(result.statements)
    assert outputs == ["0", "1", "2"]
    assert "i" not in interpreter.bindings()


def test_while_with_break_and_continue(brew):
    source = """
beans n pour_in 0
steep n less_caffeine 10 {
    n pour_in n add 1
    taste n same_blend 2 { continue }
    taste n same_blend 5 { break }
    pourout n
}
"""
    assert brew(source) == ["1", "3", "4"]


def test_for_continue_still_runs_increment(brew):
    source = "pour beans i pour_in 0; i less_caffeine 4; i pour_in i add 1 {\n  taste i same_blend 1 { continue }\n  pourout i\n}"
    assert brew(source) == ["0", "2", "3"]


def test_foreach_break_and_continue(brew):
    source = "pour n in [1, 2, 3, 4] {\n  taste n same_blend 2 { continue }\n  taste n same_blend 4 { break }\n  pourout n\n}"
    assert brew(source) == ["1", "3"]


def test_foreach_over_non_array(make_interpreter):
    _, error = _run_expecting_error(make_interpreter, "pour n in 5 { }")
    assert error.message.startswith("Can't foreach over non-cup values!")


def test_conditions_require_boolean_true(brew):
    assert brew('taste 1 { pourout "ran" } otherwise { pourout "skipped" }') == ["skipped"]


def test_recursion(brew):
    source = """
brew fact(n) {
    taste n less_caffeine 2 { serve 1 }
    serve n brewop fact(n sip 1)
}
pourout fact(5)
"""
    assert brew(source) == ["120"]


def test_function_without_serve_returns_null(brew):
    assert brew("brew nothing() { }\npourout nothing()") == ["null"]


def test_extra_arguments_are_ignored(brew):
    assert brew("brew first(a) { serve a }\npourout first(1, 2, 3)") == ["1"]


def test_missing_arguments_stay_unbound(make_interpreter):
    _, error = _run_expecting_error(make_interpreter, "brew second(a, b) { serve b }\nsecond(1)")
    assert error.message == "Variable b not found"


def test_function_scope_sees_callers_bindings(brew):
    assert brew("brew show() { pourout shared }\nbeans shared pour_in 7\nshow()") == ["7"]


def test_assignment_updates_innermost_binding(brew):
    source = "beans total pour_in 0\npour n in [1, 2, 3] {\n  total pour_in total add n\n}\npourout total"
    assert brew(source) == ["6"]


def test_try_catch_does_not_intercept_break(brew):
    source = """
pour n in [1, 2, 3] {
    taste_carefully {
        taste n same_blend 2 { break }
    } if_spilled {
        pourout "caught"
    }
    pourout n
}
"""
    assert brew(source) == ["1"]


def test_try_catch_inside_function_lets_serve_through(brew):
    source = 'brew pick() {\n  taste_carefully { serve "early" } if_spilled { serve "late" }\n  serve "never"\n}\npourout pick()'
    assert brew(source) == ["early"]


def test_top_level_serve_ends_the_program(brew):
    assert brew("pourout 1\nserve\npourout 2") == ["1"]


def test_break_outside_loop_is_an_error(make_interpreter):
    _, error = _run_expecting_error(make_interpreter, "break")
    assert error.message == "'break' used outside of a loop"


def test_break_inside_function_does_not_escape(make_interpreter):
    _, error = _run_expecting_error(make_interpreter, "brew leave() { break }\npour n in [1] { leave() }")
    assert error.message == "'break' used outside of a loop"


def test_string_operations(brew):
    source = 'pourout "a" add 1\npourout 2 add "b"\npourout "x" same_blend "x"\npourout "x" different_blend "x"\npourout 1.5 add 1\npourout 5 pourop 2'
    assert brew(source) == ["a1", "2b", "true", "false", "2.5", "2.5"]


@pytest.mark.parametrize(
    "source, message",
    [
        ('pourout "a" sip "b"', "Invalid operation on strings"),
        ('pourout "a" brewop 2', "Invalid operation on string and number"),
        ('pourout 2 brewop "a"', "Invalid operation on number and string"),
        ("pourout true add 1", "Mismatched types in binary operation"),
        ("pourout 7 grounds 0", "Modulo by zero!"),
        ('pourout -"a"', "Operand must be a number"),
        ("pourout ghost", "Variable ghost not found"),
        ("ghost pour_in 1", "Variable 'ghost' not declared."),
        ("beans n pour_in 5\npourout n.size", "Member access is only valid on objects"),
        ("beans o pour_in {a: 1}\npourout o.b", "Member 'b' not found on object"),
        ("beans n pour_in 5\nn.size pour_in 1", "Member access on a non-object."),
        ("beans a pour_in [1]\npourout a[3]", "Array index out of bounds"),
        ('beans a pour_in [1]\npourout a["x"]', "Array access on non-array type or with non-numeric index"),
        ("beans a pour_in [1]\na[5] pour_in 2", "Array index out of bounds"),
        ("beans a pour_in [1, 2]\npourout a[0.5]", "Array index out of bounds"),
        ("beans a pour_in [1, 2]\na[1.5] pour_in 9", "Array index out of bounds"),
        ("beans n pour_in 1\nn[0] pour_in 2", "Invalid array assignment"),
        ("beans n pour_in 5\nn()", "This is not a function you can call!"),
        ("beans o pour_in {a: 1}\no()", "This object is not a function."),
        ("pourout this", "Cannot use 'this' outside of a bean"),
        ("pourout super", "Cannot use 'super' outside of a bean"),
        ("beans g pour_in new Ghost()", "Bean Ghost not found"),
    ],
)
def test_runtime_error_messages(make_interpreter, source, message):
    _, error = _run_expecting_error(make_interpreter, source)
    assert error.message == message


def test_numeric_operators(brew):
    source = "pourout 7 grounds 3\npourout 2 less_caffeine 3\npourout 3 not_weaker 3\npourout 3 not_stronger 2\npourout -4"
    assert brew(source) == ["1", "true", "true", "false", "-4"]


def test_bitwise_operators_use_32_bit_integers(brew):
    source = "pourout 6 blend_with 3\npourout 6 top_with 1\npourout 6 spice 3\npourout 1 double_shot 4\npourout 5 half_caf 1\npourout invert 0\npourout 7.9 top_with 0\npourout 1 double_shot 31"
    assert brew(source) == ["2", "7", "5", "16", "2", "-1", "7", "-2147483648"]


def test_logical_operators_use_truthiness(brew):
    source = 'pourout no_foam 0\npourout 0 or "x"\npourout 1 with 0\npourout true with true'
    assert brew(source) == ["true", "true", "false", "true"]


def test_logical_operators_short_circuit(brew):
    assert brew("pourout false with ghost\npourout true or ghost") == ["false", "true"]


def test_print_forms(brew):
    source = 'pourout "a", 1, "b"\npourout [1, "a"]\npourout [[1, "a"], 2]\nbeans p pour_in {name: "Ada"}\npourout p\npourout p.name\nbrew f() { }\npourout f\npourout true'
    assert brew(source) == ["a1b", "1a", '[1, "a"]2', "Object(p)", "Ada", "Function(f)", "true"]


def test_object_fields_can_be_assigned(brew):
    assert brew("beans p pour_in {age: 3}\np.age pour_in p.age add 1\npourout p.age") == ["4"]


def test_constructor_binds_fields(brew):
    source = """
bean Point {
    x pour_in 0
    y pour_in 0
    brew init(a, b) {
        this.x pour_in a
        this.y pour_in b
    }
    brew sum() { serve this.x add this.y }
}
beans p pour_in new Point(3, 4)
pourout p.x add p.y
pourout p.sum()
"""
    assert brew(source) == ["7", "7"]


def test_field_initialisers_are_evaluated_at_construction(brew):
    source = "beans base pour_in 1\nbean Cup {\n  size pour_in base add 1\n}\nbase pour_in 10\npourout new Cup().size"
    assert brew(source) == ["11"]


def test_methods_resolve_on_any_receiver_shape(brew):
    source = """
bean Cup {
    size pour_in 1
    brew describe() { serve "cup of " add this.size }
}
brew make() { serve new Cup() }
beans cups pour_in [new Cup(), new Cup()]
pourout cups[1].describe()
pourout make().describe()
pourout new Cup().describe()
"""
    assert brew(source) == ["cup of 1", "cup of 1", "cup of 1"]


def test_beans_can_be_used_before_their_declaration(brew):
    source = "beans m pour_in new Mug()\npourout m.size\nbean Mug {\n  size pour_in 12\n}"
    assert brew(source) == ["12"]


def test_bean_names_evaluate_to_their_declaration(brew):
    assert brew("bean Mug { }\npourout Mug") == ["Bean(Mug)"]


def test_a_variable_shadows_a_bean_name(brew):
    assert brew("bean Mug { }\nbeans Mug pour_in 3\npourout Mug") == ["3"]


def test_recipe_conformance_is_reported_without_stopping(make_interpreter, outputs):
    source = """
bean Water blend Drinkable {
    brew pour_it() { serve 1 }
}
recipe Drinkable {
    sip_it() -> String
    pour_it()
}
pourout "still brewing"
"""
    result = parse(source)
    interpreter = make_interpreter()
    interpreter.run(result.statements)
    assert interpreter.warnings == [
        "Bean 'Water' does not implement required method 'sip_it' from recipe 'Drinkable'"
    ]
    assert outputs == ["still brewing"]


def test_brew_time_sleeps_whole_seconds(make_interpreter):
    naps = []
    result = parse('brew_time 2.7\nbrew_time "long"\nbrew_time 0')
    make_interpreter(sleep=naps.append).run(result.statements)
    assert naps == [2, 1, 1]


def test_natives_are_callable_and_can_be_shadowed(brew):
    source = 'pourout root_drip(16)\npourout foam_up("latte")\nbrew cup_size(x) { serve 42 }\npourout cup_size([1])'
    assert brew(source) == ["4", "LATTE", "42"]


def test_native_errors_are_catchable(brew):
    source = 'taste_carefully { root_drip() } if_spilled (e) { pourout e }\ntaste_carefully { root_drip("x") } if_spilled (e) { pourout e }'
    assert brew(source) == [
        "root_drip() expects 1 argument, but got 0",
        "root_drip() expects a number as an argument.",
    ]


def test_input_goes_through_the_input_provider(brew):
    prompts = []

    def provider(prompt):
        prompts.append(prompt)
        return "  flat white \n"

    assert brew('pourout whats_the_gossip("Order? ")', input_provider=provider) == ["flat white"]
    assert prompts == ["Order? "]


def test_catch_variable_is_scoped_to_the_catch_block(make_interpreter):
    result = parse("taste_carefully { pourout ghost } if_spilled (err) { }")
    interpreter = make_interpreter()
    interpreter.run(result.statements)
    assert "err" not in interpreter.bindings()


def test_state_persists_across_runs(make_interpreter, outputs):
    interpreter = make_interpreter()
    interpreter.run(parse("beans x pour_in 2").statements)
    interpreter.run(parse("pourout x brewop 21").statements)
    assert outputs == ["42"]
    assert interpreter.bindings() == {"x": "2"}


def test_scopes_are_restored_after_an_error(make_interpreter):
    interpreter, _ = _run_expecting_error(make_interpreter, "brew boom() { pour n in [1] { serve 1 pourop 0 } }\nboom()")
    assert len(interpreter.scopes) == 1


def test_traceback_text_and_json(make_interpreter):
    source = "brew boom() {\n    serve 1 pourop 0\n}\nboom()"
    interpreter, error = _run_expecting_error(make_interpreter, source)
    assert [frame.name for frame in error.frames] == ["<top-level>", "boom"]
    formatter = TracebackFormatter(interpreter)
    text = formatter.format_text(error, verbose=False)
    lines = text.splitlines()
    assert lines[0] == "Traceback (most recent call last):"
    assert '  File "<string>", line 4, in <top-level>' in lines
    assert '  File "<string>", line 2, in boom' in lines
    assert "    serve 1 pourop 0" in lines
    assert lines[-1] == "BrewcoRuntimeError: Division by zero!"
    data = json.loads(formatter.to_json(error))
    assert data["error"]["message"] == "Division by zero!"
    assert data["error"]["failing_step_index"] == error.step_index
    assert [frame["name"] for frame in data["traceback"]] == ["<top-level>", "boom"]


def test_verbose_traceback_includes_scope_snapshot(make_interpreter):
    source = "brew boom(x) {\n    serve x pourop 0\n}\nboom(3)"
    interpreter, error = _run_expecting_error(make_interpreter, source, verbose=True)
    text = TracebackFormatter(interpreter).format_text(error, verbose=True)
    assert "Env snapshot: x=3" in text


def test_deep_recursion_is_reported_as_runtime_error(make_interpreter):
    _, error = _run_expecting_error(make_interpreter, "brew forever(n) { serve forever(n add 1) }\nforever(0)")
    assert "too much recursion" in error.message


def test_recursion_five_hundred_deep(brew):
    source = """
brew total(n) {
    taste n same_blend 0 { serve 0 }
    serve n add total(n sip 1)
}
pourout total(500)
"""
    assert brew(source) == ["125250"]


def test_brewing_depth_limit_can_be_caught(brew):
    source = """
brew forever(n) { serve forever(n add 1) }
taste_carefully { forever(0) } if_spilled (err) { pourout err }
pourout "still brewing"
"""
    assert brew(source) == ["Maximum brewing depth exceeded: too much recursion", "still brewing"]


def test_step_log_stays_bounded(make_interpreter):
    source = """
brew noop() { serve 1 }
beans n pour_in 0
steep n less_caffeine 3000 {
    n pour_in n add noop()
}
"""
    interpreter = make_interpreter()
    interpreter.run(parse(source).statements)
    assert interpreter.logger.next_state_index > 3000
    assert interpreter.logger.frame_last_entry == {}


def test_arguments_to_a_bean_without_init_are_not_evaluated(brew):
    source = "bean Plain {\n  size pour_in 1\n}\nbeans p pour_in new Plain(ghost)\npourout p.size"
    assert brew(source) == ["1"]
