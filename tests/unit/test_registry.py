"""
Unit tests for the Registry.
"""

import pytest

from callforward.models.telephony import Context, Extension
from callforward.services.registry import Registry
from callforward.utils.exceptions import ConfigurationException, UnknownContextException


REGISTRY_YAML = """
extensions:
  - extension: "702"
    name: Sales desk
  - extension: "704"
contexts:
  - asterisk_name: from_internal
    display_name: Internal line
  - asterisk_name: from_external
    display_name: External trunk
"""


class TestRegistry:
    """Tests for Registry lookups and loading."""

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(REGISTRY_YAML)

        registry = Registry.from_yaml(path)

        assert registry.extension("702").display_name == "Sales desk"
        assert registry.extension("704").display_name is None
        assert registry.context("from_external").display_name == "External trunk"
        assert [c.protocol_name for c in registry.contexts()] == ["from_external", "from_internal"]

    def test_unknown_extension_is_external(self, registry):
        exten = registry.extension("0031201234567")

        assert exten.extension_id == "0031201234567"
        assert exten.display_name is None

    def test_unknown_context_raises(self, registry):
        with pytest.raises(UnknownContextException) as exc_info:
            registry.context("from_mars")

        assert exc_info.value.context_name == "from_mars"
        assert not registry.has_context("from_mars")

    def test_missing_file_is_configuration_error(self, tmp_path):
        with pytest.raises(ConfigurationException):
            Registry.from_yaml(tmp_path / "missing.yaml")

    def test_invalid_yaml_is_configuration_error(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("extensions: [unclosed")

        with pytest.raises(ConfigurationException):
            Registry.from_yaml(path)

    def test_context_without_display_name_is_configuration_error(self):
        with pytest.raises(ConfigurationException):
            Registry.from_dict({"contexts": [{"asterisk_name": "from_internal"}]})

    def test_duplicate_context_is_configuration_error(self):
        with pytest.raises(ConfigurationException):
            Registry(
                extensions=[],
                contexts=[Context("from_internal", "A"), Context("from_internal", "B")],
            )

    def test_duplicate_extension_is_configuration_error(self):
        with pytest.raises(ConfigurationException):
            Registry(extensions=[Extension("702"), Extension("702", "Again")], contexts=[])

    def test_empty_file_gives_empty_registry(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")

        registry = Registry.from_yaml(path)

        assert registry.extensions() == []
        assert registry.contexts() == []
