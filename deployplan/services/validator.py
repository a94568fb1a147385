"""
Validation service for existing resource group names
Checks supplied names against the naming convention; never blocks a deployment
"""

from typing import Iterable, List, Optional

from deployplan.models import NamingWarning, ResolvedTopology
from deployplan.services.conventions import ComponentKind, NamingConventions, get_conventions


class NamingValidator:
    """Lints caller-supplied resource group names and returns warnings"""

    def __init__(self, conventions: Optional[NamingConventions] = None):
        self.conventions = conventions or get_conventions()

    def validate(
        self,
        resource_group_name: str,
        expected_tokens: Iterable[str],
        dependency: Optional[str] = None,
    ) -> List[NamingWarning]:
        """
        Check one resource group name

        Returns:
            A list of NamingWarning, empty when the name follows the convention
        """
        warnings = []
        name = (resource_group_name or "").lower()
        tokens = tuple(sorted({t.lower() for t in expected_tokens if t}))
        label = f"{dependency} resource group" if dependency else "Resource group"

        if tokens and not any(t in name for t in tokens):
            warnings.append(NamingWarning(
                dependency=dependency,
                resource_group=resource_group_name,
                expected_tokens=tokens,
                message=(
                    f"{label} '{resource_group_name}' contains none of the expected "
                    f"tokens: {', '.join(tokens)}. "
                    f"Check that it points at the intended resources."
                ),
            ))

        prefix = self.conventions.resource_group_prefix
        if not name.startswith(prefix):
            warnings.append(NamingWarning(
                dependency=dependency,
                resource_group=resource_group_name,
                expected_tokens=tokens,
                message=(
                    f"{label} '{resource_group_name}' does not start with '{prefix}'. "
                    f"Consider following the '{prefix}{{app}}-{{role}}-{{env}}-{{region}}' convention."
                ),
            ))

        return warnings

    def validate_topology(self, topology: ResolvedTopology) -> List[NamingWarning]:
        """Lint every Existing dependency; Created ones follow the convention by construction"""
        warnings = []
        for kind in (ComponentKind.PLATFORM, ComponentKind.LOGGING):
            ref = topology.ref(kind)
            if ref.is_created:
                continue
            warnings.extend(self.validate(
                ref.resource_group,
                self.conventions.expected(kind),
                dependency=kind.value,
            ))
        return warnings
