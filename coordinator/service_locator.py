"""Service locator for the process-wide upload coordinator."""

from typing import Optional

from coordinator.services.upload_coordinator import UploadCoordinator

_coordinator: Optional[UploadCoordinator] = None


def set_coordinator(coordinator: Optional[UploadCoordinator]) -> None:
    """Set global upload coordinator instance"""
    global _coordinator
    _coordinator = coordinator


def get_coordinator() -> UploadCoordinator:
    """
    Get global upload coordinator instance, building it from config on first use.
    """
    global _coordinator
    if _coordinator is None:
        _coordinator = UploadCoordinator.from_config()
    return _coordinator
