"""Tests for personalize/config.py"""

from personalize.config import PersonalizationConfig, load_config


class TestLoadConfig:
    """Tests for YAML loading and its fallbacks."""

    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")

        assert config == PersonalizationConfig()

    def test_nested_personalization_section(self, tmp_path):
        path = tmp_path / "personalization.yaml"
        path.write_text("personalization:\n  storage:\n    data_dir: /tmp/learning\n")

        config = load_config(path)

        assert config.storage.data_dir == "/tmp/learning"

    def test_list_root_gives_defaults(self, tmp_path):
        path = tmp_path / "personalization.yaml"
        path.write_text("- storage\n- thresholds\n")

        config = load_config(path)

        assert config == PersonalizationConfig()

    def test_invalid_value_gives_defaults(self, tmp_path):
        path = tmp_path / "personalization.yaml"
        path.write_text("suggestions:\n  suppress_below: 4\n")

        config = load_config(path)

        assert config.suggestions.suppress_below == 0.15

    def test_env_override(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("model:\n  rebuild_every_events: 3\n")
        monkeypatch.setenv("PERSONALIZE_CONFIG", str(path))

        assert load_config().model.rebuild_every_events == 3


def test_data_dir_defaults_to_none():
    assert PersonalizationConfig().storage.data_dir is None
