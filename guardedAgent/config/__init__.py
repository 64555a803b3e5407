"""Configuration package for guardedAgent."""

from .settings import (
    CircuitBreakerSettings,
    CompressionSettings,
    ErrorAnalysisSettings,
    GovernanceSettings,
    MemorySettings,
    ObservabilitySettings,
    PersistenceSettings,
    PlanningSettings,
    PredictorSettings,
    ProviderSettings,
    ResilienceSettings,
    SelectionSettings,
    Settings,
    ValidationSettings,
    VerificationSettings,
    get_settings,
)
from .project_root import get_project_root, resolve_project_path

__all__ = [
    "Settings",
    "get_settings",
    "ProviderSettings",
    "GovernanceSettings",
    "ResilienceSettings",
    "CircuitBreakerSettings",
    "ValidationSettings",
    "PredictorSettings",
    "ErrorAnalysisSettings",
    "PlanningSettings",
    "VerificationSettings",
    "SelectionSettings",
    "MemorySettings",
    "CompressionSettings",
    "PersistenceSettings",
    "ObservabilitySettings",
    "get_project_root",
    "resolve_project_path",
]
