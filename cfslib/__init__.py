"""
cfs shared library.
"""
# Import constants module for easy access
from . import constants
from .constants import (
    DEFAULT_BROWSE_HOST,
    DEFAULT_BROWSE_PORT,
    DEFAULT_OUTPUT_DIR,
    DEFAULT_RETRY_ATTEMPTS,
    ERROR_CATEGORIES,
)
from .errors import (
    CliPluginError,
    CliUserError,
    ErrorCollector,
    categorize_error,
    serialize_error,
    summary_message,
    write_error_log,
)
from .models import Region, to_document
from .utils import (
    ProgressTracker,
    encode_path_segment,
    print_summary_table,
    setup_logging,
    split_hierarchy,
    trim_to_suffix,
    write_json,
)

__version__ = "1.2.0"

__all__ = [
    # Constants
    'constants',
    'DEFAULT_OUTPUT_DIR',
    'DEFAULT_BROWSE_HOST',
    'DEFAULT_BROWSE_PORT',
    'DEFAULT_RETRY_ATTEMPTS',
    'ERROR_CATEGORIES',
    # Errors
    'CliUserError',
    'CliPluginError',
    'ErrorCollector',
    'categorize_error',
    'serialize_error',
    'summary_message',
    'write_error_log',
    # Models
    'Region',
    'to_document',
    # Utils
    'ProgressTracker',
    'encode_path_segment',
    'split_hierarchy',
    'trim_to_suffix',
    'print_summary_table',
    'setup_logging',
    'write_json',
]
