"""
Error kinds raised while resolving a deployment plan.

All of them are deterministic: the same inputs always fail the same way, so
nothing here is ever retried.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Sequence


class DeploymentPlanError(Exception):
    """Base class for every hard plan-resolution failure."""

    code = "DeploymentPlanError"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class InvalidInput(DeploymentPlanError):
    code = "InvalidInput"

    def __init__(self, field: str, message: str):
        super().__init__(f"Invalid input '{field}': {message}", field=field)


class InvalidRegion(DeploymentPlanError):
    code = "InvalidRegion"

    def __init__(self, region: str, supported: Iterable[str] = ()):
        supported = sorted(supported)
        super().__init__(
            f"Unsupported region: '{region}'. No region code is defined for it.",
            region=region,
            supported=supported,
        )


class NameConstraintViolation(DeploymentPlanError):
    code = "NameConstraintViolation"

    def __init__(self, name: str, resource_type: str, reason: str):
        super().__init__(
            f"Name '{name}' is not valid for {resource_type}: {reason}",
            name=name,
            resource_type=resource_type,
            reason=reason,
        )


class NameTooLong(NameConstraintViolation):
    def __init__(self, name: str, resource_type: str, max_length: int):
        super().__init__(
            name,
            resource_type,
            f"{len(name)} characters exceeds the maximum of {max_length}",
        )
        self.details["max_length"] = max_length


class NameTooShort(NameConstraintViolation):
    def __init__(self, name: str, resource_type: str, min_length: int):
        super().__init__(
            name,
            resource_type,
            f"{len(name)} characters is below the minimum of {min_length}",
        )
        self.details["min_length"] = min_length


class InvalidCharset(NameConstraintViolation):
    def __init__(self, name: str, resource_type: str, allowed: str):
        super().__init__(name, resource_type, f"allowed characters are {allowed}")


class MissingExistingReference(DeploymentPlanError):
    code = "MissingExistingReference"

    def __init__(self, dependency: str, missing: Sequence[str]):
        super().__init__(
            f"'{dependency}' is not being created but no existing reference was supplied "
            f"(missing: {', '.join(missing)})",
            dependency=dependency,
            missing=list(missing),
        )


class CyclicDependency(DeploymentPlanError):
    code = "CyclicDependency"

    def __init__(self, stages: Sequence[str]):
        super().__init__(
            f"Deployment stages form a cycle: {', '.join(stages)}",
            stages=list(stages),
        )


class UnknownStageDependency(DeploymentPlanError):
    code = "UnknownStageDependency"

    def __init__(self, stage: str, dependency: str):
        super().__init__(
            f"Stage '{stage}' depends on undeclared stage '{dependency}'",
            stage=stage,
            dependency=dependency,
        )


class PlanResolutionError(DeploymentPlanError):
    """Every hard error found in one resolution pass."""

    code = "PlanResolutionError"

    def __init__(self, errors: Sequence[DeploymentPlanError]):
        self.errors: List[DeploymentPlanError] = flatten(errors)
        summary = "; ".join(e.message for e in self.errors)
        super().__init__(f"{len(self.errors)} configuration error(s): {summary}")

    def codes(self) -> List[str]:
        return [e.code for e in self.errors]

    def first(self, error_type: type) -> Optional[DeploymentPlanError]:
        return next((e for e in self.errors if isinstance(e, error_type)), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "errors": [e.to_dict() for e in self.errors],
        }


def flatten(errors: Iterable[DeploymentPlanError]) -> List[DeploymentPlanError]:
    """Expand aggregates and drop repeats of the same failure."""
    flat: List[DeploymentPlanError] = []
    seen = set()
    for e in errors:
        for err in (e.errors if isinstance(e, PlanResolutionError) else [e]):
            key = (err.code, err.message)
            if key not in seen:
                seen.add(key)
                flat.append(err)
    return flat


def raise_if_any(errors: Sequence[DeploymentPlanError]) -> None:
    """Raise a single error as-is, several as one PlanResolutionError."""
    flat = flatten(errors)
    if len(flat) == 1:
        raise flat[0]
    if flat:
        raise PlanResolutionError(flat)
