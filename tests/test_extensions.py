import textwrap

import pytest

from extensions import (
    ExtensionAPI,
    ExtensionError,
    HookRegistry,
    RuntimeServices,
    StepContext,
    load_runtime_services,
)


def test_handlers_run_by_priority():
    registry = HookRegistry()
    calls = []
    registry.on_event("program_end", lambda *a: calls.append("low"), priority=0, ext_name="a")
    registry.on_event("program_end", lambda *a: calls.append("high"), priority=10, ext_name="b")
    registry.emit("program_end", None, 0)
    assert calls == ["high", "low"]


def test_unknown_event():
    with pytest.raises(ExtensionError):
        HookRegistry().on_event("on_tick", lambda: None, priority=0, ext_name="x")


def test_step_rules():
    registry = HookRegistry()
    seen = []
    registry.add_step_rule(name="every2", every_n=2, handler=lambda i, ctx: seen.append(ctx.step_index), ext_name="x")
    for index in range(5):
        registry.after_step(None, StepContext(step_index=index, order=index + 1, opcode="BREAK", extra=None))
    assert seen == [0, 2, 4]


def test_step_rule_needs_positive_interval():
    with pytest.raises(ExtensionError):
        HookRegistry().add_step_rule(name="bad", every_n=0, handler=lambda i, ctx: None, ext_name="x")


def test_api_records_metadata():
    services = RuntimeServices()
    api = ExtensionAPI(services=services, ext_name="demo")
    api.metadata(name="demo", version="2.0")
    assert services.metadata[0].name == "demo"
    assert services.metadata[0].version == "2.0"


def test_every_n_steps_during_run(run):
    services = RuntimeServices()
    api = ExtensionAPI(services=services, ext_name="sampler")
    opcodes = []

    @api.every_n_steps(2)
    def sample(interpreter, ctx):
        opcodes.append(ctx.opcode)

    run("""
        CREATEFRAME
        PUSHFRAME
        POPFRAME
    """, services=services)
    assert opcodes == ["CREATEFRAME", "POPFRAME"]


def test_load_extension_from_file(tmp_path, run):
    path = tmp_path / "counter.py"
    path.write_text(textwrap.dedent("""
        IPP_EXTENSION_NAME = "counter"
        COUNTS = []

        def ipp_register(ext):
            ext.metadata(name="counter", version="0.1")

            @ext.on_event("after_instruction")
            def _count(interpreter, instruction):
                COUNTS.append(instruction.order)
    """))
    services = load_runtime_services([str(path)])
    assert [m.name for m in services.metadata] == ["counter"]
    result = run("""
        WRITE int@1
        WRITE int@2
    """, services=services)
    assert result.stdout == "12"


def test_extension_without_register(tmp_path):
    path = tmp_path / "empty.py"
    path.write_text("VALUE = 1\n")
    with pytest.raises(ExtensionError) as info:
        load_runtime_services([str(path)])
    assert info.value.exit_code == 10


def test_extension_api_version_mismatch(tmp_path):
    path = tmp_path / "future.py"
    path.write_text("IPP_EXTENSION_API_VERSION = 99\n\ndef ipp_register(ext):\n    pass\n")
    with pytest.raises(ExtensionError):
        load_runtime_services([str(path)])


def test_missing_extension_file(tmp_path):
    with pytest.raises(ExtensionError):
        load_runtime_services([str(tmp_path / "nope.py")])
