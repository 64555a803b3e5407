"""Safety layers: validation, risk prediction, error analysis, circuit breaker and resilience."""

from .circuit_breaker import CircuitBreaker, CircuitState, FailureOutcome
from .error_analyzer import ErrorAnalysis, ErrorAnalyzer, LoopDetection, RecoveryPlan
from .predictor import ErrorPredictor, Risk, RiskAssessment
from .resilience import ErrorClassification, HealthReport, ToolResilience, classify_error
from .validator import OutputValidator, ValidationIssue, ValidationResult, format_for_llm

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "FailureOutcome",
    "ErrorAnalysis",
    "ErrorAnalyzer",
    "LoopDetection",
    "RecoveryPlan",
    "ErrorPredictor",
    "Risk",
    "RiskAssessment",
    "ErrorClassification",
    "HealthReport",
    "ToolResilience",
    "classify_error",
    "OutputValidator",
    "ValidationIssue",
    "ValidationResult",
    "format_for_llm",
]
