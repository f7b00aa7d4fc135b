"""
Constants for the cfs resource mirror.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Output Layout
# =============================================================================

DEFAULT_OUTPUT_DIR = ".cfs"
GITIGNORE_FILE = ".gitignore"
ERRORS_LOG_FILE = "errors.log"
PLUGINS_DIR = "plugins"
PLUGINS_RUN_DIR = ".run"
PLUGIN_DECLARATION_FILES = ("plugins.json", "plugins.yaml", "plugins.yml")

# Entries of the output root that are not resource files
NON_RESOURCE_ENTRIES = {GITIGNORE_FILE, ERRORS_LOG_FILE, PLUGINS_DIR}

# File name for a resource whose identity is also the parent of other identities.
# Encoded segments always have two hex digits after "%", so this never collides.
LEAF_FILE_NAME = "%leaf"

JSON_INDENT = 2
FILE_MODE = 0o600

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_BROWSE_HOST = "localhost"
DEFAULT_BROWSE_PORT = 3000

# Region used for global services (IAM, S3 listing, Route 53, CloudFront)
GLOBAL_CLIENT_REGION = "us-east-1"

MAX_REGIONS = 1000
MAX_REGION_NAME_LENGTH = 100

# =============================================================================
# Environment Variables
# =============================================================================

ENV_DISABLE_PLUGINS = "CFS_DISABLE_PLUGINS"
ENV_OUTPUT = "CFS_OUTPUT"
TRUTHY_ENV_VALUES = ("1", "true")

# =============================================================================
# Error Categories (ordered by user-facing precedence)
# =============================================================================

CATEGORY_NO_INTERNET = "NoInternetAccess"
CATEGORY_AUTH_MISSING = "AuthenticationMissing"
CATEGORY_AUTH_EXPIRED = "AuthenticationExpired"
CATEGORY_AUTH_INVALID = "AuthenticationInvalid"
CATEGORY_PERMISSIONS = "InsufficientPermissions"
CATEGORY_SCHEMA = "SchemaValidationFailed"
CATEGORY_UNKNOWN = "Unknown"

ERROR_CATEGORIES = (
    CATEGORY_NO_INTERNET,
    CATEGORY_AUTH_MISSING,
    CATEGORY_AUTH_EXPIRED,
    CATEGORY_AUTH_INVALID,
    CATEGORY_PERMISSIONS,
    CATEGORY_SCHEMA,
    CATEGORY_UNKNOWN,
)

# Fields stripped from serialized errors, per category
SENSITIVE_ERROR_FIELDS = {
    CATEGORY_AUTH_EXPIRED: ("Token-0",),
    CATEGORY_AUTH_INVALID: ("AWSAccessKeyId",),
}

# =============================================================================
# Resource Kind Scopes
# =============================================================================

SCOPE_REGIONAL = "regional"
SCOPE_GLOBAL = "global"
