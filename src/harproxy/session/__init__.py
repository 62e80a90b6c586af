"""Proxy session supervision for harproxy."""

from harproxy.session.client import ControlPlaneClient, HarCaptureManager
from harproxy.session.drain import OutputDrain
from harproxy.session.manager import ProxySessionManager
from harproxy.session.supervisor import ProcessSupervisor, SupervisedProcess

__all__ = [
    "ControlPlaneClient",
    "HarCaptureManager",
    "OutputDrain",
    "ProcessSupervisor",
    "ProxySessionManager",
    "SupervisedProcess",
]
