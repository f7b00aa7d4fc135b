"""
Error handling for the cfs resource mirror.

Discovery failures never stop a sync. Every failing region branch or resource
kind hands its exception to a run-scoped ErrorCollector; at the end of the run
the collected errors are categorized, stripped of credentials fragments and
written to the error log.

Categories (first matching predicate wins):
    NoInternetAccess         DNS resolution / endpoint connection failures
    AuthenticationMissing    no credentials could be loaded
    AuthenticationExpired    expired session or SSO token
    AuthenticationInvalid    unknown access key or invalid token
    InsufficientPermissions  access denied / unauthorized operation
    SchemaValidationFailed   a listing page did not match its shape
    Unknown                  everything else
"""
import logging
import re
import socket
import threading
import traceback
from collections.abc import Mapping
from typing import Any, Callable, Dict, List, Optional, Tuple

from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    UnauthorizedSSOTokenError,
)
from pydantic import ValidationError

from .constants import (
    CATEGORY_AUTH_EXPIRED,
    CATEGORY_AUTH_INVALID,
    CATEGORY_AUTH_MISSING,
    CATEGORY_NO_INTERNET,
    CATEGORY_PERMISSIONS,
    CATEGORY_SCHEMA,
    CATEGORY_UNKNOWN,
    ERROR_CATEGORIES,
    SENSITIVE_ERROR_FIELDS,
)
from .utils import write_json

logger = logging.getLogger(__name__)


class CliUserError(Exception):
    """Raised for invalid user input and for a sync that finished with errors."""


class CliPluginError(Exception):
    """Raised when a plugin declaration is invalid or a plugin step fails."""


# =============================================================================
# Error Shape Accessors
# =============================================================================

def _field(error: Any, name: str) -> Any:
    """Read a field from an error given as an exception or a mapping."""
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def _error_code(error: Any) -> Optional[str]:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code')
    return _field(error, 'Code') or _field(error, '__type')


def _http_status(error: Any) -> Optional[int]:
    if isinstance(error, ClientError):
        return error.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
    return _field(error, 'http_status_code')


def _message(error: Any) -> str:
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Message') or ''
    message = _field(error, 'message')
    if isinstance(message, str):
        return message
    return '' if isinstance(error, Mapping) else str(error)


def _name(error: Any) -> str:
    name = _field(error, 'name')
    if isinstance(name, str):
        return name
    return type(error).__name__


# =============================================================================
# Category Predicates
# =============================================================================

_EAI_AGAIN = getattr(socket, 'EAI_AGAIN', -3)

_NOT_AUTHORIZED_PATTERN = re.compile(
    r'^(User: arn:aws:).+( is not authorized to perform: ).+( on resource: ).+'
)


def _is_no_internet(error: Any) -> bool:
    if isinstance(error, EndpointConnectionError):
        return True
    if isinstance(error, socket.gaierror) and error.errno == _EAI_AGAIN:
        return True
    return _field(error, 'code') == 'EAI_AGAIN' and _field(error, 'syscall') == 'getaddrinfo'


def _is_auth_missing(error: Any) -> bool:
    if isinstance(error, NoCredentialsError):
        return True
    return (
        _name(error) == 'CredentialsProviderError'
        and _message(error) == 'Could not load credentials from any providers'
    )


def _is_auth_expired(error: Any) -> bool:
    if isinstance(error, UnauthorizedSSOTokenError):
        return True
    return _error_code(error) in ('RequestExpired', 'ExpiredToken', 'ExpiredTokenException')


def _is_auth_invalid(error: Any) -> bool:
    code, status, message = _error_code(error), _http_status(error), _message(error)
    if code == 'AuthFailure' and status == 401 and message == 'AWS was not able to validate the provided access credentials':
        return True
    if code == 'InvalidAccessKeyId' and status == 403 and message == 'The AWS Access Key Id you provided does not exist in our records.':
        return True
    if code == 'InvalidClientTokenId' and status == 403 and message == 'The security token included in the request is invalid.':
        return True
    return code == 'UnrecognizedClientException'


def _is_insufficient_permissions(error: Any) -> bool:
    code, status = _error_code(error), _http_status(error)
    if code in ('AccessDenied', 'AuthorizationError', 'UnauthorizedOperation') and status == 403:
        return True
    if code == 'AccessDeniedException' and status == 400:
        return True
    return bool(_NOT_AUTHORIZED_PATTERN.match(_message(error))) and status in (400, 403)


def _is_schema_mismatch(error: Any) -> bool:
    return isinstance(error, ValidationError)


# Evaluated top to bottom, first match wins
CATEGORY_RULES: List[Tuple[Callable[[Any], bool], str]] = [
    (_is_no_internet, CATEGORY_NO_INTERNET),
    (_is_auth_missing, CATEGORY_AUTH_MISSING),
    (_is_auth_expired, CATEGORY_AUTH_EXPIRED),
    (_is_auth_invalid, CATEGORY_AUTH_INVALID),
    (_is_insufficient_permissions, CATEGORY_PERMISSIONS),
    (_is_schema_mismatch, CATEGORY_SCHEMA),
]


def categorize_error(error: Any) -> str:
    """Return the category of a captured error."""
    for predicate, category in CATEGORY_RULES:
        if predicate(error):
            return category
    return CATEGORY_UNKNOWN


# =============================================================================
# Serialization
# =============================================================================

def serialize_error(error: Any, strip_fields: Tuple[str, ...] = ()) -> Dict[str, Any]:
    """
    Convert a captured error into a JSON-friendly dict.

    Fields named in strip_fields are left out wherever they appear (error
    attributes, mapping keys, or the botocore error body).
    """
    if isinstance(error, Mapping):
        return {k: v for k, v in error.items() if k not in strip_fields}

    data: Dict[str, Any] = {'name': type(error).__name__, 'message': str(error)}

    if isinstance(error, ClientError):
        error_body = {
            k: v for k, v in error.response.get('Error', {}).items()
            if k not in strip_fields
        }
        metadata = error.response.get('ResponseMetadata', {})
        data.update({
            'code': error_body.get('Code'),
            'operation_name': error.operation_name,
            'http_status_code': metadata.get('HTTPStatusCode'),
            'request_id': metadata.get('RequestId'),
            'response': {'Error': error_body},
        })
    elif isinstance(error, ValidationError):
        data['title'] = error.title
        data['issues'] = error.errors(include_url=False)
    else:
        for key, value in vars(error).items():
            if key.startswith('_') or key in strip_fields:
                continue
            data[key] = value

    if isinstance(error, BaseException) and error.__traceback__ is not None:
        data['stack'] = traceback.format_exception(type(error), error, error.__traceback__)

    return data


# =============================================================================
# Error Collector
# =============================================================================

class ErrorCollector:
    """
    Run-scoped, append-only collection of discovery errors.

    Writers running in worker threads append concurrently, so appends are
    guarded by a lock. Errors are kept in insertion order and never
    deduplicated.
    """

    def __init__(self):
        self._errors: List[Any] = []
        self._lock = threading.Lock()

    def add_error(self, error: Any, context: str = "") -> None:
        """Record a failure."""
        with self._lock:
            self._errors.append(error)
        if context:
            logger.warning(f"[{context}] {type(error).__name__}: {error}")
        else:
            logger.warning(f"{type(error).__name__}: {error}")

    @property
    def errors(self) -> List[Any]:
        with self._lock:
            return list(self._errors)

    def __len__(self) -> int:
        with self._lock:
            return len(self._errors)

    def get_formatted_errors(self) -> Dict[str, Any]:
        """
        Categorize and serialize every captured error.

        Returns:
            {'count': N, 'categories': {category: count}, 'errors': [{'type', 'error'}]}
        """
        categories = {category: 0 for category in ERROR_CATEGORIES}
        formatted = []

        for error in self.errors:
            category = categorize_error(error)
            categories[category] += 1
            formatted.append({
                'type': category,
                'error': serialize_error(error, SENSITIVE_ERROR_FIELDS.get(category, ())),
            })

        return {
            'count': len(formatted),
            'categories': categories,
            'errors': formatted,
        }


# Checked in order; the first category with a non-zero count picks the message
_SUMMARY_MESSAGES = [
    (CATEGORY_NO_INTERNET,
     "The operation failed because AWS could not be reached. Check your internet connection."),
    (CATEGORY_AUTH_MISSING,
     "The operation failed because no AWS credentials were found. "
     "Configure credentials (for example with `aws configure` or AWS_PROFILE) and try again."),
    (CATEGORY_AUTH_EXPIRED,
     "The operation failed because your AWS credentials have expired. Refresh them and try again."),
    (CATEGORY_AUTH_INVALID,
     "The operation failed because your AWS credentials are invalid. Check your access key and session token."),
    (CATEGORY_PERMISSIONS,
     "The operation completed, but the credentials used are not allowed to list some resources."),
    (CATEGORY_SCHEMA,
     "The operation completed, but some resources did not match their expected shape."),
]


def summary_message(report: Dict[str, Any], log_path: str) -> str:
    """Pick the single user-facing message for a run that had errors."""
    categories = report.get('categories', {})
    message = "The operation completed, but with some errors."
    for category, text in _SUMMARY_MESSAGES:
        if categories.get(category):
            message = text
            break
    return f"{message} Check the {log_path} file for more information."


def write_error_log(report: Dict[str, Any], filepath: str) -> None:
    """Persist the formatted error report, readable by the owner only."""
    write_json(report, filepath)
    logger.info(f"Wrote error log to {filepath}")
