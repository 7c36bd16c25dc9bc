"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.

Configuration Management Module
"""

import os
import json
import logging
from typing import Optional

from gateflash.constants import (
    BOARD_CATALOG_URL,
    RELEASE_CATALOG_URL,
    FIRMWARE_BASE_URL,
    DEVICE_HOSTNAME,
    DEVICE_FALLBACK_IP,
    BAUD_RATE,
)

HOME_PATH = os.path.join(os.path.expanduser("~"), ".gateflash")
CONFIG_FILE_DEFAULT = "config.json"
BOARDS_FILE = os.path.join(HOME_PATH, "boards.json")

DEFAULTS = {
    "board-catalog-url": BOARD_CATALOG_URL,
    "release-catalog-url": RELEASE_CATALOG_URL,
    "firmware-base-url": FIRMWARE_BASE_URL,
    "cdn-mirror-url": None,
    "esptool-path": None,
    "port": None,
    "baud-rate": BAUD_RATE,
    "device-hostname": DEVICE_HOSTNAME,
    "device-ip": DEVICE_FALLBACK_IP,
}

logger = logging.getLogger("Config")


def get_local_boards():
    """
    Loads the local user board catalog override file.
    Returns:
        dict or None: The parsed JSON data if the file exists and is valid, otherwise None.
    """
    if os.path.exists(BOARDS_FILE):
        try:
            with open(BOARDS_FILE, "rt") as file:
                return json.load(file)
        except json.JSONDecodeError:
            logger.error(f"Warning: Board file {BOARDS_FILE} is not a valid JSON.")
    return None


class ConfigManager:
    """
    Manages persisted tool settings: catalog and firmware URLs, the esptool
    location, the last serial port that flashed successfully and the device
    address used after flashing. Values missing from the file fall back to
    the built-in defaults. One instance exists per configuration file name.
    """

    _instances = {}
    _initialized_configs = {}

    def __new__(cls, config_filename: Optional[str] = None, *args, **kwargs):
        actual_filename = config_filename or CONFIG_FILE_DEFAULT
        instance_key = os.path.join(HOME_PATH, actual_filename)

        if instance_key not in cls._instances:
            cls._instances[instance_key] = super(ConfigManager, cls).__new__(cls)
        return cls._instances[instance_key]

    def __init__(self, config_filename: Optional[str] = None):
        actual_filename = config_filename or CONFIG_FILE_DEFAULT
        self.config_file_path = os.path.join(HOME_PATH, actual_filename)

        if self.config_file_path in ConfigManager._initialized_configs:
            return

        self._config = {}
        self._load_config()
        ConfigManager._initialized_configs[self.config_file_path] = True
        logger.debug(f"ConfigManager initialized for {self.config_file_path}.")

    def _load_config(self):
        if os.path.exists(self.config_file_path):
            try:
                with open(self.config_file_path, "r") as file:
                    self._config = json.load(file)
            except json.JSONDecodeError:
                logger.error(
                    f"Error: Configuration file {self.config_file_path} "
                    "is not a valid JSON. Resetting configuration."
                )
                self._config = {}
        else:
            self._config = {}

    def _save_config(self):
        if not os.path.exists(HOME_PATH):
            try:
                os.makedirs(HOME_PATH)
            except OSError as e:
                logger.error(
                    f"Error: Unable to create configuration directory {HOME_PATH}: {e}"
                )
                return
        try:
            with open(self.config_file_path, "w") as f:
                json.dump(self._config, f, indent=4)
        except IOError as e:
            logger.error(
                f"Error: Unable to save configuration to {self.config_file_path}: {e}"
            )

    def get_value(self, key, default=None):
        """
        Retrieves a value from the configuration. Keys that were never set
        return the built-in default, or `default` when there is none.
        """
        if key in self._config:
            return self._config[key]
        value = DEFAULTS.get(key)
        return default if value is None else value

    def set_value(self, key, value):
        """Sets a value and saves the configuration file. None removes the key."""
        if value is None:
            self.remove_key(key)
            return
        self._config[key] = value
        self._save_config()

    def remove_key(self, key):
        if key in self._config:
            del self._config[key]
            self._save_config()

    def list_all(self):
        """Returns every known key with its effective value."""
        merged = dict(DEFAULTS)
        merged.update(self._config)
        return merged

    @classmethod
    def reset_instances(cls):
        """Forgets all cached instances so the next construction re-reads disk."""
        cls._instances.clear()
        cls._initialized_configs.clear()
