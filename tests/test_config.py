"""
Tests for vmassess/config.py.

Covers:
- YAML config file loading and env var substitution
- VMA_* environment variables
- Merge priority: CLI > config file > environment
- List and integer normalization
- Sample config generation
"""
import argparse
import os
import sys

import pytest
import yaml

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from vmassess.config import (
    args_to_config,
    generate_sample_config,
    load_config,
    load_config_file,
    load_env_config,
    merge_configs,
)

ENV_VARS = ('VMA_OUTPUT', 'VMA_LOG_LEVEL', 'VMA_SUBSCRIPTIONS', 'VMA_REGIONS', 'VMA_PARALLEL_VMS')


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate tests from the caller's VMA_* variables and default config files."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv('HOME', str(tmp_path))


def make_args(**overrides) -> argparse.Namespace:
    values = {
        'output': None,
        'log_level': None,
        'subscription': None,
        'regions': None,
        'parallel_vms': None,
        'config': None,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def write_config(path, data) -> str:
    path.write_text(yaml.safe_dump(data))
    os.chmod(path, 0o600)
    return str(path)


class TestLoadConfigFile:
    """Tests for YAML config file loading."""

    def test_load_file(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", {
            'output': './out',
            'parallel_vms': '4',
            'regions': 'eastus, westeurope',
        })

        config = load_config_file(path)

        assert config == {'output': './out', 'parallel_vms': 4, 'regions': ['eastus', 'westeurope']}

    def test_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv('ASSESS_DIR', '/data/assess')
        path = write_config(tmp_path / "config.yaml", {
            'output': '${ASSESS_DIR}',
            'log_level': '${MISSING_LEVEL:-DEBUG}',
        })

        config = load_config_file(path)

        assert config['output'] == '/data/assess'
        assert config['log_level'] == 'DEBUG'

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config_file(str(tmp_path / "missing.yaml"))

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ValueError):
            load_config_file(str(path))

    def test_invalid_integer(self, tmp_path):
        path = write_config(tmp_path / "config.yaml", {'parallel_vms': 'many'})
        with pytest.raises(ValueError, match="parallel_vms"):
            load_config_file(path)


class TestEnvConfig:
    """Tests for VMA_* environment variables."""

    def test_env_values(self, monkeypatch):
        monkeypatch.setenv('VMA_SUBSCRIPTIONS', 'sub-1,Production')
        monkeypatch.setenv('VMA_PARALLEL_VMS', '8')

        config = load_env_config()

        assert config == {'subscriptions': ['sub-1', 'Production'], 'parallel_vms': 8}

    def test_no_env(self):
        assert load_env_config() == {}


class TestMerge:
    """Tests for config merging and priority."""

    def test_later_wins_and_none_ignored(self):
        merged = merge_configs({'output': 'a', 'log_level': 'INFO'}, {'output': 'b', 'log_level': None})
        assert merged == {'output': 'b', 'log_level': 'INFO'}

    def test_args_to_config(self):
        args = make_args(subscription=['sub-1'], regions='eastus', parallel_vms=2)
        assert args_to_config(args) == {
            'subscriptions': ['sub-1'],
            'regions': ['eastus'],
            'parallel_vms': 2,
        }

    def test_priority(self, tmp_path, monkeypatch):
        """Test CLI beats the config file, which beats the environment."""
        monkeypatch.setenv('VMA_OUTPUT', '/from/env')
        monkeypatch.setenv('VMA_LOG_LEVEL', 'WARNING')
        monkeypatch.setenv('VMA_REGIONS', 'northeurope')
        path = write_config(tmp_path / "config.yaml", {'output': '/from/file', 'log_level': 'DEBUG'})
        args = make_args(config=path, output='/from/cli')

        merged = load_config(args)

        assert merged['output'] == '/from/cli'
        assert merged['log_level'] == 'DEBUG'
        assert merged['regions'] == ['northeurope']
        assert args.output == '/from/cli'
        assert args.log_level == 'DEBUG'
        assert args.regions == ['northeurope']

    def test_default_config_location(self, tmp_path):
        write_config(tmp_path / "vma-config.yaml", {'subscriptions': ['Production']})
        args = make_args()

        load_config(args)

        assert args.subscription == ['Production']


class TestSampleConfig:
    """Tests for generate_sample_config."""

    def test_sample_is_valid_yaml(self):
        config = yaml.safe_load(generate_sample_config())
        assert config['parallel_vms'] == 1
        assert config['log_level'] == 'INFO'
