import os
import yaml


def get_config(config_file):
    if not os.path.isfile(config_file):
        raise FileNotFoundError(f"Config file does not exist: {config_file}")
    with open(config_file, 'r') as cf:
        parsed_yaml = yaml.load(
            cf,
            Loader=yaml.FullLoader
        )
    return parsed_yaml or {}


def merge_configs(config_list):
    """Merge config mappings in order; later entries win, nested dicts merge one level deep."""
    if not config_list:
        raise ValueError("config_list must not be empty")
    merged_config = {}
    for cl in config_list:
        for key, value in (cl or {}).items():
            current = merged_config.get(key)
            if isinstance(current, dict) and isinstance(value, dict):
                merged_config[key] = {**current, **value}
            else:
                merged_config[key] = value
    return merged_config
