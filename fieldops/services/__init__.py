from fieldops.services.mode import (
    ModeResolution, ServiceRegistry, UnknownCapabilityError, build_services, resolve_mode,
)
from fieldops.services.capabilities import CAPABILITIES

__all__ = [
    "ModeResolution", "ServiceRegistry", "UnknownCapabilityError",
    "build_services", "resolve_mode", "CAPABILITIES",
]
