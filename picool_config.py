#!/usr/bin/env python3
"""
🧊🐧🧊 PiCool Configuration
==========================
Copyright (c) 2025 PNGN-Tec LLC

Tuning constants for the refrigerator controller. The control core, the
hardware environment and the simulator all read their defaults from here;
constructors take keyword overrides.
"""

# ============================================================================
# TARGET BAND
# ============================================================================

TARGET_RANGE_LOW = 1.3                  # °C - compressor switches off below
TARGET_RANGE_HIGH = 4.4                 # °C - compressor switches on above

# ============================================================================
# TIMING
# ============================================================================

MINIMUM_ON_DURATION = 60.0 * 2          # seconds - compressor dwell when on
MINIMUM_OFF_DURATION = 60.0 * 8         # seconds - compressor dwell when off
POLL_INTERVAL = 10.0                    # seconds between temperature reads
SENSOR_RETRY_INTERVAL = 10.0            # seconds - backoff after failed read

# ============================================================================
# ADAPTIVE COMPENSATION
# ============================================================================

COMPENSATION_HISTORY_SIZE = 10          # observations kept for the median
COMPENSATION_MIN_UPDATE = 0.01          # °C - ignore smaller median moves
LOW_MAX_COMPENSATION = 1.0              # °C - low edge may only move up
HIGH_MAX_COMPENSATION = -1.0            # °C - high edge may only move down
WARMUP_STATE_CHANGES = 1                # power changes ignored for learning

# ============================================================================
# OBSERVERS
# ============================================================================

MAX_POLL_CALLBACKS = 10

# ============================================================================
# PERSISTENCE
# ============================================================================

STATE_DIR = '/var/lib/picool'
LAST_OFF_TRANSITION_FILE_PREFIX = 'last_off_'
COMPENSATION_FILE_PREFIX = 'comp_'

# ============================================================================
# SENSOR VALIDATION (DS18B20)
# ============================================================================

MILLIDEGREE_TO_DEGREE = 1000.0
SENSOR_TEMP_MIN = -55.0                 # °C datasheet range
SENSOR_TEMP_MAX = 125.0                 # °C datasheet range
SENSOR_POWER_ON_RESET_TEMP = 85.0       # °C - value reported before conversion

# ============================================================================
# SIMULATION
# ============================================================================

SIM_START_TEMP = 4.6                    # °C
SIM_ROOM_TEMP = 22.0                    # °C
SIM_HEAT_LEAK_PER_SEC = 0.000140        # fraction of (room - temp) per second
SIM_COOLING_C_PER_SEC = 0.0047          # compressor heat removal
SIM_LATENT_COOLING = 300.0              # seconds of cooling after switch-off
SIM_STARTUP_LAG = 60.0                  # seconds before cooling after switch-on
SIM_STEP = 1.0                          # seconds per physics step
SIM_OFF_CYCLES = 5                      # demo supervisory limit
SIM_SENSOR_ID = '28-00000demo00'
