"""
Tests for the starter exception hierarchy.

Tests key exception features including:
- Base StarterError with context
- Specific exception classes and inheritance
- ChildExitError return code
"""

import pytest

from serverstarter.exceptions import (
    ChildExitError,
    ConfigurationError,
    DescriptorError,
    ProcessSpawnError,
    ProtocolError,
    SignalDeliveryError,
    StarterError,
)


@pytest.mark.unit
class TestStarterError:
    """Test StarterError base class."""

    def test_message_only(self):
        error = StarterError("spawn failed")
        assert str(error) == "spawn failed"
        assert error.message == "spawn failed"
        assert error.context == {}

    def test_str_includes_context(self):
        error = StarterError("bad descriptor", fd=5, index=1)
        assert str(error) == "bad descriptor (fd=5, index=1)"
        assert error.context == {"fd": 5, "index": 1}

    def test_can_be_raised_and_caught(self):
        with pytest.raises(StarterError, match="boom"):
            raise StarterError("boom")


@pytest.mark.unit
class TestSubclasses:
    """Every category is catchable as StarterError."""

    @pytest.mark.parametrize(
        "cls",
        [
            ConfigurationError,
            DescriptorError,
            ProcessSpawnError,
            SignalDeliveryError,
            ProtocolError,
        ],
    )
    def test_inherits_from_starter_error(self, cls):
        error = cls("failed", key="value")
        assert isinstance(error, StarterError)
        assert str(error) == "failed (key=value)"

    def test_child_exit_error_carries_returncode(self):
        error = ChildExitError("worker exited with failure", returncode=3, pid=42)
        assert error.returncode == 3
        assert error.context == {"returncode": 3, "pid": 42}
        assert "returncode=3" in str(error)
        assert isinstance(error, StarterError)
