from __future__ import annotations

# Volume bounds
MIN_SIZE_MB = 1
MAX_SIZE_MB = 64
MIN_SECRET_LENGTH = 1
MAX_SECRET_LENGTH = 64
MIB = 1024 * 1024

# Container and filesystem
LUKS_TYPE = "luks2"
LUKS_CIPHER = "aes-xts-plain64"
FILESYSTEM_TYPE = "ext4"
MAPPER_DIR = "/dev/mapper"

# TPM
TPM_DEVICE = "/dev/tpmrm0"
DEFAULT_NV_INDEX = "0x1500016"
NV_ATTRIBUTES = "ownerread|ownerwrite|authread|authwrite"
DEFAULT_KEYSCRIPT_PATH = "/usr/local/bin/tpm-luks-keyscript.sh"

# Boot-time configuration
DEFAULT_FSTAB_PATH = "/etc/fstab"
DEFAULT_CRYPTTAB_PATH = "/etc/crypttab"
FSTAB_MOUNTPOINT_FIELD = 1
CRYPTTAB_NAME_FIELD = 0

# Secret sources
SOURCE_HARDWARE = "hardware"
SOURCE_SOFTWARE = "software"
SOURCE_ESCROW = "escrow"
SOURCE_KEYFILE = "keyfile"

# Journald keys
LOG_KEY_EVENT = "LB_EVENT"
LOG_KEY_MAPPER = "MAPPER"
LOG_KEY_VOLUME = "VOLUME"
LOG_KEY_MOUNTPOINT = "MOUNTPOINT"
LOG_KEY_STEP = "STEP"
LOG_KEY_RESULT = "RESULT"
LOG_KEY_SOURCE = "SOURCE"
LOG_KEY_STATE = "STATE"

# Events
EVENT_GENERATE = "generate"
EVENT_ESCROW = "escrow"
EVENT_PROVISION = "provision"
EVENT_OPEN = "open"
EVENT_MOUNT = "mount"
EVENT_TEARDOWN = "teardown"
EVENT_PERSIST = "persist"
EVENT_ERROR = "error"
