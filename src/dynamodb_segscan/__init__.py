"""
dynamodb-segscan
Parallel segmented DynamoDB scan on asyncio, with filters and resumable cursors.

Quick start:
------------
from dynamodb_segscan import ParallelScanner, BotoScanTransport
from dynamodb_segscan.client import build_session, build_ddb_client
"""

from .client import BotoScanTransport, ClientSettings, build_ddb_client, build_session
from .errors import DecodeError, InvalidExpressionError, ScanError, TransportError
from .models import (Expression, PageCursor, ResumePoint, ScanCheckpoint, ScanOptions,
                     ScanRequest, ScanResponse, SegmentPassThrough)
from .scanner import ParallelScanner, scan, scan_resumable

__all__ = [
    "ParallelScanner",
    "scan",
    "scan_resumable",
    "BotoScanTransport",
    "ClientSettings",
    "build_session",
    "build_ddb_client",
    "Expression",
    "ScanOptions",
    "ScanRequest",
    "ScanResponse",
    "SegmentPassThrough",
    "PageCursor",
    "ResumePoint",
    "ScanCheckpoint",
    "ScanError",
    "InvalidExpressionError",
    "TransportError",
    "DecodeError",
]
__version__ = "0.2.0"
