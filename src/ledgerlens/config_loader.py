"""
Configuration loader for ledgerlens.

Loads settings from a YAML file in the config directory:

    rules_file: rules.csv
    grouping:
      similarity_threshold: 0.6
      min_name_length: 3
      debug: false
"""

import os

import yaml

from .grouping import GroupingConfig

DEFAULT_SETTINGS_FILE = 'settings.yaml'
DEFAULT_RULES_FILE = 'rules.csv'


def load_settings(config_dir, settings_file=DEFAULT_SETTINGS_FILE):
    """Load main settings from settings.yaml (or specified file)."""
    settings_path = os.path.join(config_dir, settings_file)

    if not os.path.exists(settings_path):
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with open(settings_path, 'r', encoding='utf-8') as f:
        settings = yaml.safe_load(f)

    if settings is None:
        return {}
    if not isinstance(settings, dict):
        raise ValueError(f"Settings file must contain a mapping: {settings_path}")
    return settings


def resolve_grouping_config(grouping):
    """Build a GroupingConfig from the 'grouping' settings section.

    Raises ValueError for unknown keys or out-of-range values.
    """
    if grouping is None:
        return GroupingConfig()
    if not isinstance(grouping, dict):
        raise ValueError("'grouping' must be a mapping")

    unknown = set(grouping) - {'similarity_threshold', 'min_name_length', 'debug'}
    if unknown:
        raise ValueError(f"Unknown grouping setting(s): {', '.join(sorted(unknown))}")

    try:
        return GroupingConfig.from_dict(grouping)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid grouping settings: {e}")


def load_config(config_dir, settings_file=DEFAULT_SETTINGS_FILE):
    """Load all configuration files.

    Args:
        config_dir: Path to config directory containing settings.yaml and rules.csv.
        settings_file: Name of the settings file to load (default: settings.yaml)

    Returns:
        dict with all configuration values, plus:
        - '_config_dir': absolute config directory
        - '_rules_path': absolute path of the rules CSV
        - 'grouping_config': resolved GroupingConfig
    """
    config_dir = os.path.abspath(config_dir)

    if not os.path.isdir(config_dir):
        raise FileNotFoundError(f"Config directory not found: {config_dir}")

    config = load_settings(config_dir, settings_file)

    config['_config_dir'] = config_dir

    rules_file = config.get('rules_file') or DEFAULT_RULES_FILE
    config['rules_file'] = rules_file
    config['_rules_path'] = os.path.normpath(os.path.join(config_dir, rules_file))

    config['grouping_config'] = resolve_grouping_config(config.get('grouping'))

    return config
