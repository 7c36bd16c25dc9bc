"""
Project Name: Gateflash
Copyright (c) 2025 Gateflash contributors

Permission is hereby granted under MIT license.
"""

PRODUCT_NAME = "FPVGate"

BOARD_CATALOG_URL = (
    "https://raw.githubusercontent.com/LouisHitchcock/FPVGate/main/boards.json"
)
RELEASE_CATALOG_URL = "https://api.github.com/repos/LouisHitchcock/FPVGate/releases"
FIRMWARE_BASE_URL = "https://louishitchcock.github.io/FPVGate/firmware"

DEVICE_HOSTNAME = "fpvgate.local"
DEVICE_FALLBACK_IP = "192.168.4.1"

# Seconds
CATALOG_TIMEOUT = 10
DOWNLOAD_TIMEOUT = 30
ESPTOOL_TIMEOUT = 120

BAUD_RATE = 460800

TIER_STANDARD = "standard"
TIER_EXPERT = "expert"
TIERS = (TIER_STANDARD, TIER_EXPERT)

# Resolution strategies
STRATEGY_USER_UPLOAD = "user-upload"
STRATEGY_ORIGIN_RELEASE = "origin-release"
STRATEGY_CDN_MIRROR = "cdn-mirror"
STRATEGY_LOCAL_HOSTED = "local-hosted"

ROLE_FIRMWARE = "firmware"
ROLE_FILESYSTEM = "filesystem"
CUSTOM_BINARY_ROLES = (ROLE_FIRMWARE, ROLE_FILESYSTEM)
FILESYSTEM_SEGMENT_ROLES = ("littlefs", "spiffs", "fatfs", "filesystem")

MAX_FLASH_OFFSET = 0xFFFFFFFF

# chipFamily -> esptool --chip
ESPTOOL_CHIPS = {
    "ESP32": "esp32",
    "ESP32-S2": "esp32s2",
    "ESP32-S3": "esp32s3",
    "ESP32-C3": "esp32c3",
    "ESP32-C6": "esp32c6",
    "ESP32-H2": "esp32h2",
}

# Espressif, CP210x, CH340, FTDI
KNOWN_USB_VIDS = (0x303A, 0x10C4, 0x1A86, 0x0403)

_S3_8MB_PARTS = [
    {"path": "bootloader.bin", "offset": 0x0},
    {"path": "partitions.bin", "offset": 0x8000},
    {"path": "firmware.bin", "offset": 0x10000},
    {"path": "littlefs.bin", "offset": 0x410000},
]

_SMALL_PARTS = [
    {"path": "bootloader.bin", "offset": 0x0},
    {"path": "partitions.bin", "offset": 0x8000},
    {"path": "firmware.bin", "offset": 0x10000},
]

# Flash layouts for the known boards, keyed by board id.
BOARD_LAYOUTS = {
    "esp32s3": {
        "chipFamily": "ESP32-S3",
        "prefix": "ESP32S3-8MB",
        "parts": _S3_8MB_PARTS,
    },
    "esp32s3supermini": {
        "chipFamily": "ESP32-S3",
        "prefix": "ESP32S3-SuperMini-4MB",
        "parts": [
            {"path": "bootloader.bin", "offset": 0x0},
            {"path": "partitions.bin", "offset": 0x8000},
            {"path": "firmware.bin", "offset": 0x10000},
            {"path": "littlefs.bin", "offset": 0x210000},
        ],
    },
    "esp32c3": {
        "chipFamily": "ESP32-C3",
        "prefix": "ESP32C3",
        "parts": _SMALL_PARTS,
    },
    "lilygo": {
        "chipFamily": "ESP32-S3",
        "prefix": "LilyGO-T-Energy-S3",
        "parts": _S3_8MB_PARTS,
    },
    "esp32c6": {
        "chipFamily": "ESP32-C6",
        "prefix": "ESP32C6",
        "parts": _SMALL_PARTS,
    },
}

# Used when the remote board catalog cannot be loaded.
FALLBACK_BOARDS = [
    {
        "value": "esp32s3",
        "label": "ESP32-S3 DevKitC-1 (8MB Flash) - Recommended",
        "expert_mode": 0,
    },
    {
        "value": "esp32s3supermini",
        "label": "ESP32-S3 Super Mini (4MB Flash)",
        "expert_mode": 0,
    },
    {"value": "esp32c3", "label": "ESP32-C3", "expert_mode": 1},
    {"value": "esp32c6", "label": "ESP32-C6", "expert_mode": 1},
    {"value": "lilygo", "label": "LilyGO T-Energy S3", "expert_mode": 1},
]
