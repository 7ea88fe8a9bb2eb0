from .guardian import SafetyGuardian, SafetyViolation
from .preflight import SetupError, check_environment

__all__ = ["SafetyGuardian", "SafetyViolation", "SetupError", "check_environment"]
