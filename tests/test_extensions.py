import pytest

from extensions import (
    BinLangExtensionError,
    ExtensionAPI,
    HookRegistry,
    RuntimeServices,
    StepContext,
    load_runtime_services,
)


class TestHookRegistry:
    def test_handlers_run_by_priority(self):
        registry = HookRegistry()
        calls = []
        registry.on_event("program_end", lambda: calls.append("low"), priority=0, ext_name="a")
        registry.on_event("program_end", lambda: calls.append("high"), priority=10, ext_name="b")
        registry.on_event("program_end", lambda: calls.append("low-2"), priority=0, ext_name="c")
        registry.emit("program_end")
        assert calls == ["high", "low", "low-2"]
        assert [obs.source for obs in registry.observers("program_end")] == ["b", "a", "c"]

    def test_unknown_event(self):
        with pytest.raises(BinLangExtensionError, match="Unknown event"):
            HookRegistry().on_event("on_tick", print, priority=0, ext_name="x")

    def test_step_rule_needs_positive_interval(self):
        with pytest.raises(BinLangExtensionError):
            HookRegistry().add_step_rule(name="never", every_n=0, handler=print, ext_name="x")

    def test_step_rules_fire_on_multiples(self):
        registry = HookRegistry()
        seen = []
        registry.add_step_rule(name="third", every_n=3, handler=lambda _i, ctx: seen.append(ctx.step_index), ext_name="x")
        for step in range(1, 8):
            registry.after_step(None, StepContext(step_index=step, rule="EXPR", location=None))
        assert seen == [3, 6]


class TestExtensionAPI:
    def test_decorator_and_plain_forms(self):
        services = RuntimeServices()
        api = ExtensionAPI(services=services, ext_name="demo")

        @api.on_event("on_error", priority=5)
        def report(_interp, _error):
            pass

        def tick(_interp, _ctx):
            pass

        assert api.every_n_steps(2, tick) is tick
        assert services.hook_registry.observers("on_error")[0].handler is report

    def test_metadata_version_check(self):
        api = ExtensionAPI(services=RuntimeServices(), ext_name="demo")
        with pytest.raises(BinLangExtensionError):
            api.metadata(name="demo", requires_api=99)

    def test_load_runtime_services(self, tmp_path):
        ext = tmp_path / "named.py"
        ext.write_text(
            "BINLANG_EXTENSION_NAME = 'named'\n"
            "def binlang_register(ext):\n"
            "    ext.metadata(name='named', version='1.2.0')\n"
            "    ext.on_event('program_start', lambda interp, program: None)\n",
            encoding="utf-8",
        )
        services = load_runtime_services([str(ext)])
        assert services.extension_names() == ["named"]
        assert services.hook_registry.observers("program_start")[0].source == "named"

    def test_wrong_api_version(self, tmp_path):
        ext = tmp_path / "old.py"
        ext.write_text("BINLANG_EXTENSION_API_VERSION = 0\ndef binlang_register(ext):\n    pass\n", encoding="utf-8")
        with pytest.raises(BinLangExtensionError, match="targets API 0"):
            load_runtime_services([str(ext)])

    def test_missing_file(self, tmp_path):
        with pytest.raises(BinLangExtensionError, match="not found"):
            load_runtime_services([str(tmp_path / "ghost.py")])
