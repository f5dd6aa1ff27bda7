"""Central constants for vbus2mqtt (Python 3.12)."""

# Bus arbitration: flag polling
BUS_POLL_INTERVAL = 0.1
BUS_POLL_ATTEMPTS = 50
# Upper bound for the free-bus and release handshakes
BUS_HANDSHAKE_TIMEOUT = 20.0

# Value get/set exchanges (resol-vbus defaults)
DEFAULT_VALUE_TIMEOUT = 0.5
DEFAULT_VALUE_TIMEOUT_INCR = 0.5
DEFAULT_VALUE_TRIES = 3

# Consolidation / publishing (seconds)
DEFAULT_LOGGING_INTERVAL = 10
DEFAULT_LOGGING_TIME_TO_LIVE = 60
DEFAULT_MQTT_INTERVAL = 5

# MQTT
DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_TLS_PORT = 8883
DEFAULT_MQTT_TOPIC = "resol"
MQTT_ENCODINGS = ("json", "urlencoded")
INBOUND_QUEUE_SIZE = 100
SET_TOPIC_SUFFIX = "set"

# Health
DEFAULT_HEALTH_CHECK_INTERVAL = 0
MAX_HEALTH_FAILURES = 3

# Process exit codes
EXIT_CODE_RESTART_REQUIRED = 2

# Field map used when none is configured (DeltaSol-style controller)
DEFAULT_FIELD_MAP = {
    "values": {
        "counter": {"id": 8227, "writeable": False},
        "boilerTempMin": {
            "id": 4113,
            "type": {"precision": 1, "min": 10, "max": 80},
            "writeable": True,
        },
        "boilerTempTarget": {
            "id": 4110,
            "type": {"precision": 1, "min": 30, "max": 85},
            "writeable": True,
        },
        "r1SpeedMin": {"id": 8248},
        "r1SpeedMax": {"id": 8257},
    },
    "header": {
        "temp1": "00_0010_5611_10_0100_000_2_0",
        "temp2": "00_0010_5611_10_0100_002_2_0",
        "temp3": "00_0010_5611_10_0100_004_2_0",
        "temp4": "00_0010_5611_10_0100_006_2_0",
        "relay1": "00_0010_5611_10_0100_008_1_0",
        "relay2": "00_0010_5611_10_0100_009_1_0",
        "mixerOpen": "00_0010_5611_10_0100_010_1_0",
        "mixerClosed": "00_0010_5611_10_0100_011_2_0",
        "systemMessage": "00_0010_5611_10_0100_018_1_0",
        "date": "00_0010_5611_10_0100_012_4_0",
        "time": "00_0010_5611_10_0100_016_2_0",
        # Block type fields
        "pumpSpeed1": "00_8015_F54C_10_5AD5_00_0015_5611_10_0100_01_08_4_004_1_0",
        "error": "00_8015_F54C_10_5AD5_00_0015_5611_10_0100_01_0B_1_004_4_0",
        "heatQuantity1": "00_8015_F76C_10_3ECC_00_0015_5611_10_0100_02_0A_1_008_4_0",
        "heatQuantity2": "00_8015_4AF9_10_A85F_00_0015_5611_10_0100_01_05_1_004_4_0",
    },
}
