"""Tests for primitive substitution and restoration."""

from types import SimpleNamespace

import pytest

from netobserver.instrumentation import PatchError, PatchRegistry, ObservedFunction, is_observed


def passthrough(wrapped, instance, args, kwargs):
    return wrapped(*args, **kwargs)


class Greeter:
    def greet(self, name):
        return f"hello {name}"

    @staticmethod
    def shout(text):
        return text.upper()


class TestPatchRegistry:
    """Test install/restore semantics."""

    def test_install_and_restore_on_namespace(self, registry):
        """Test substituting a plain attribute and writing it back."""
        original = lambda url: f"sent {url}"
        target = SimpleNamespace(send=original)

        registry.wrap(target, "send", passthrough, "beacon")

        assert is_observed(target.send)
        assert target.send("/c") == "sent /c"
        assert registry.is_patched(target, "send")
        assert registry.original(target, "send") is original

        assert registry.restore(target, "send") is True
        assert target.send is original
        assert not registry.is_patched(target, "send")

    def test_class_method_binding_preserved(self, registry):
        """Test the wrapper sees the bound instance."""
        seen = []
        original = vars(Greeter)["greet"]

        def wrapper(wrapped, instance, args, kwargs):
            seen.append(instance)
            return wrapped(*args, **kwargs)

        class Local(Greeter):
            greet = original

        registry.wrap(Local, "greet", wrapper, "split")
        try:
            obj = Local()
            assert obj.greet("ada") == "hello ada"
            assert seen == [obj]
            assert is_observed(obj.greet)
        finally:
            registry.restore(Local, "greet")

        assert vars(Local)["greet"] is original

    def test_restore_inherited_attribute_deletes_override(self, registry):
        """Test that a method inherited from the class is not pinned on the instance."""
        obj = Greeter()
        registry.wrap(obj, "greet", passthrough, "beacon")
        assert "greet" in vars(obj)

        registry.restore(obj, "greet")

        assert "greet" not in vars(obj)
        assert obj.greet("bob") == "hello bob"
        assert not is_observed(obj.greet)

    def test_staticmethod_survives_restore(self, registry):
        """Test that the raw descriptor is what gets written back."""

        class Local:
            shout = Greeter.__dict__["shout"]

        raw = vars(Local)["shout"]
        registry.install(Local, "shout", lambda original: staticmethod(lambda text: "patched"))
        assert Local.shout("x") == "patched"

        registry.restore(Local, "shout")
        assert vars(Local)["shout"] is raw
        assert Local.shout("x") == "X"

    def test_double_install_raises(self, registry):
        """Test that one attribute has exactly one writer."""
        target = SimpleNamespace(send=lambda: None)
        registry.wrap(target, "send", passthrough, "beacon")

        with pytest.raises(PatchError, match="already patched"):
            registry.wrap(target, "send", passthrough, "beacon")

    def test_missing_attribute_raises(self, registry):
        """Test patching an attribute the target does not have."""
        with pytest.raises(PatchError, match="not found"):
            registry.wrap(SimpleNamespace(), "fetch", passthrough, "fetch")

    def test_restore_unpatched_returns_false(self, registry):
        """Test restoring something never installed."""
        assert registry.restore(SimpleNamespace(send=None), "send") is False

    def test_restore_all(self, registry):
        """Test restoring every patch at once."""
        first = SimpleNamespace(send=lambda: 1)
        second = SimpleNamespace(fetch=lambda: 2)
        registry.wrap(first, "send", passthrough, "beacon")
        registry.wrap(second, "fetch", passthrough, "fetch")
        assert len(registry.patched()) == 2

        assert registry.restore_all() == 2
        assert registry.patched() == []
        assert not is_observed(first.send)
        assert not is_observed(second.fetch)

    def test_registries_are_independent(self):
        """Test that separate registries do not share state."""
        target = SimpleNamespace(send=lambda: None)
        PatchRegistry().wrap(target, "send", passthrough, "beacon")

        assert not PatchRegistry().is_patched(target, "send")


class TestObservedFunction:
    """Test the wrapper marker."""

    def test_channel_tag(self):
        wrapped = ObservedFunction(lambda: 42, passthrough, "fetch")

        assert wrapped() == 42
        assert wrapped.observed_channel == "fetch"

    def test_plain_callables_are_not_observed(self):
        assert not is_observed(lambda: None)
        assert not is_observed(Greeter().greet)
        assert not is_observed(None)
