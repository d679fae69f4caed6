"""Context window management."""

from .compressor import CompressionResult, ContextCompressor
from .error_log import ErrorEntry, ErrorLog, is_error_message

__all__ = ["CompressionResult", "ContextCompressor", "ErrorEntry", "ErrorLog", "is_error_message"]
