from .base import Base
from .audit import AuditLog
from .control import Control, Evidence
from .drift import ComplianceDrift, DriftTransition, RequiredAction
from .framework import Framework, FrameworkVersion, Requirement
from .mapping import Mapping, MappingControl, MappingGap

__all__ = [
    "Base",
    "AuditLog",
    "Control",
    "Evidence",
    "ComplianceDrift",
    "DriftTransition",
    "RequiredAction",
    "Framework",
    "FrameworkVersion",
    "Requirement",
    "Mapping",
    "MappingControl",
    "MappingGap",
]
