import os

import yaml

DEFAULT_CONFIG_PATH = "config.yaml"


def load_config_file(file_path=None):
    """
    Loads the configuration from the specified YAML file.

    Args:
        file_path (str): Path to the YAML configuration file. Falls back to
            $FLUXPENSE_CONFIG, then ./config.yaml.

    Returns:
        dict: Parsed configuration as a dictionary (empty for an empty file).
    """
    path = file_path or os.getenv("FLUXPENSE_CONFIG") or DEFAULT_CONFIG_PATH
    with open(path, "r") as file:
        return yaml.safe_load(file) or {}
