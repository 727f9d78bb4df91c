"""Utilidades del backend"""
from .error_utils import (
    APIError,
    ValidationError,
    PermissionDenied,
    NotFound,
    ConflictActiveOperation,
    InvalidState,
    Unavailable,
    Unauthorized,
    Forbidden,
    error_response,
    success_response,
    handle_errors,
    log_request,
    log_operation,
    validate_required
)

__all__ = [
    'APIError',
    'ValidationError',
    'PermissionDenied',
    'NotFound',
    'ConflictActiveOperation',
    'InvalidState',
    'Unavailable',
    'Unauthorized',
    'Forbidden',
    'error_response',
    'success_response',
    'handle_errors',
    'log_request',
    'log_operation',
    'validate_required'
]
