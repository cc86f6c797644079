import pytest

from extensions import ExtensionAPI, RuntimeServices
from stats import STAT_EOL, STAT_FREQUENT, STAT_HOT, STAT_INSTS, STAT_PRINT, STAT_STACK, STAT_VARS, StatsCollector


def collect(run, source, stdin=""):
    services = RuntimeServices()
    collector = StatsCollector()
    collector.attach(ExtensionAPI(services=services, ext_name="stats"))
    result = run(source, stdin=stdin, services=services)
    return collector, result


def test_counts_executed_instructions(run):
    collector, _ = collect(run, """
        DEFVAR GF@i
        MOVE GF@i int@0
        LABEL loop
        ADD GF@i GF@i int@1
        DPRINT GF@i
        JUMPIFNEQ loop GF@i int@3
    """)
    # DEFVAR, MOVE and three rounds of ADD and JUMPIFNEQ
    assert collector.instructions == 8
    assert collector.hot() == 4
    assert collector.frequent() == ["ADD", "JUMPIFNEQ"]
    assert collector.max_vars == 1


def test_stack_and_vars_maxima(run):
    collector, _ = collect(run, """
        DEFVAR GF@a
        DEFVAR GF@b
        PUSHS int@1
        PUSHS int@2
        PUSHS int@3
        POPS GF@a
        POPS GF@b
    """)
    assert collector.max_stack == 3
    assert collector.max_vars == 2


def test_exit_counts(run):
    collector, result = collect(run, "EXIT int@4")
    assert result.code == 4
    assert collector.instructions == 1


def test_empty_program():
    collector = StatsCollector()
    assert collector.hot() is None
    assert collector.frequent() == []
    assert collector.render([(STAT_HOT, None), (STAT_FREQUENT, None)]) == "\n\n"


def test_render_follows_option_order(run):
    collector, _ = collect(run, """
        DEFVAR GF@x
        PUSHS int@1
    """)
    text = collector.render([
        (STAT_PRINT, "header"),
        (STAT_INSTS, None),
        (STAT_EOL, None),
        (STAT_STACK, None),
        (STAT_VARS, None),
        (STAT_HOT, None),
    ])
    assert text == "header\n2\n\n1\n0\n1\n"


def test_render_nothing():
    assert StatsCollector().render([]) == ""


def test_unknown_statistic():
    with pytest.raises(ValueError):
        StatsCollector().render([("bogus", None)])
