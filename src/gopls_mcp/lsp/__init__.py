"""Language-server plumbing: framing, process, dispatch and bookkeeping."""

from .correlator import PendingWaiter, RequestCorrelator
from .dispatch import DispatchCore
from .documents import DiagnosticsSink, OpenDocumentCache, OpenFile
from .framing import FramingError, encode_message, read_message, write_message
from .process import AnalyzerProcess
from .readiness import ReadinessState, ReadinessTracker

__all__ = [
    "AnalyzerProcess",
    "DiagnosticsSink",
    "DispatchCore",
    "FramingError",
    "OpenDocumentCache",
    "OpenFile",
    "PendingWaiter",
    "ReadinessState",
    "ReadinessTracker",
    "RequestCorrelator",
    "encode_message",
    "read_message",
    "write_message",
]
