"""
Resiliency App: Fault-Injection Target for Sidecar Resiliency Policies
"""

from resiliency_app.call_tracker import CallTracker
from resiliency_app.clients import DaprClient, GrpcProxyClient, SidecarError
from resiliency_app.config import Settings
from resiliency_app.failure_engine import Action, FailureDecisionEngine, Verdict
from resiliency_app.main import app
from resiliency_app.models import AttemptRecord, FailureDescription

__all__ = [
    "app",
    "Settings",
    "CallTracker",
    "AttemptRecord",
    "FailureDescription",
    "FailureDecisionEngine",
    "Action",
    "Verdict",
    "DaprClient",
    "GrpcProxyClient",
    "SidecarError",
]

__version__ = "0.1.0"
