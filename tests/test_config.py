"""Tests for the signature tables and user settings."""

import json

import pytest

from kenibox import config as config_module
from kenibox.config import Config, load_config, load_settings, load_signatures, save_settings
from kenibox.errors import ConfigError


class TestSignatures:
    def test_tables_are_loaded(self):
        config = load_signatures()
        assert 'optifine' in config.mod_whitelist
        assert any(d['domain'] == 'liquidbounce' for d in config.cheat_domains)
        assert config.jar_max_depth == 15
        assert config.extension_max_depth == 10

    def test_lists_become_tuples(self):
        assert isinstance(load_signatures().recording_apps, tuple)


class TestOverrides:
    def test_known_keys_replace_defaults(self):
        config = Config().with_overrides(jar_max_depth=3, mod_keywords=['x'])
        assert config.jar_max_depth == 3
        assert config.mod_keywords == ('x',)

    def test_unknown_keys_are_ignored(self):
        assert Config().with_overrides(virustotal_api_key='k') == Config()


class TestSettingsFile:
    def test_missing_file(self, tmp_path):
        assert load_settings(str(tmp_path / 'none.json')) == {}

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / 'settings.json')
        save_settings({'recent_days': 3}, path)
        assert load_settings(path) == {'recent_days': 3}

    def test_malformed_json(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text('{"recent_days": ', encoding='utf-8')
        with pytest.raises(ConfigError) as exc_info:
            load_settings(str(path))
        assert str(path) in exc_info.value.message

    def test_settings_must_be_an_object(self, tmp_path):
        path = tmp_path / 'settings.json'
        path.write_text(json.dumps([1, 2]), encoding='utf-8')
        with pytest.raises(ConfigError):
            load_settings(str(path))

    def test_env_var_selects_file(self, tmp_path, monkeypatch):
        path = tmp_path / 'custom.json'
        path.write_text(json.dumps({'history_lines': 5}), encoding='utf-8')
        monkeypatch.setenv('KENIBOX_SETTINGS', str(path))
        assert config_module.settings_path() == str(path)
        assert load_config().history_lines == 5

    def test_explicit_settings(self):
        assert load_config({'recent_days': 1}).recent_days == 1
