"""
Stage rule compiler.

Turns an update request for one stage into the stage configuration stored in
a feature-switch document: either ``{"Enabled": bool}`` or a ``Requires``
list of membership requirements.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .errors import EmptyRequirement

MEMBER_OF = "PowerBI.MemberOf"
NOT_MEMBER_OF = "PowerBI.NotMemberOf"

ROLLOUT_PIVOT = "RolloutName"
TENANT_PIVOT = "TenantObjectId"


@dataclass(frozen=True)
class ToggleRequest:
    """Simple on/off for a stage."""

    enabled: bool = True


@dataclass(frozen=True)
class MembershipRequest:
    """Gate a stage on rollout and/or tenant membership."""

    tenant_ids: Sequence[str] = field(default_factory=tuple)
    rollout_name: Optional[str] = None
    is_member: bool = True


StageRequest = Union[ToggleRequest, MembershipRequest]


def _clean_tenants(tenant_ids: Optional[Sequence[str]]) -> List[str]:
    return [tenant.strip() for tenant in tenant_ids or () if tenant and tenant.strip()]


def _requirement(name: str, pivot: str, values: List[str]) -> Dict[str, Any]:
    return {"Name": name, "Parameters": {"Pivot": pivot, "Values": values}}


def compile_stage(request: StageRequest) -> Dict[str, Any]:
    """
    Compile a request into a stage configuration.

    The RolloutName requirement, when present, always precedes the
    TenantObjectId requirement; consumers of the file depend on that order.

    Raises:
        EmptyRequirement: If a membership request names neither tenants nor a rollout
    """
    if isinstance(request, ToggleRequest):
        return {"Enabled": bool(request.enabled)}

    tenants = _clean_tenants(request.tenant_ids)
    rollout = (request.rollout_name or "").strip()
    if not tenants and not rollout:
        raise EmptyRequirement(
            "A membership update needs at least one tenant id or a rollout name",
            tenant_ids=list(request.tenant_ids or ()),
            rollout_name=request.rollout_name,
        )

    name = MEMBER_OF if request.is_member else NOT_MEMBER_OF
    requires = []
    if rollout:
        requires.append(_requirement(name, ROLLOUT_PIVOT, [rollout]))
    if tenants:
        requires.append(_requirement(name, TENANT_PIVOT, tenants))
    return {"Requires": requires}


def request_from_arguments(
    tenant_ids: Optional[Sequence[str]] = None,
    rollout_name: Optional[str] = None,
    enabled: Optional[bool] = True,
    is_member: Optional[bool] = None,
) -> StageRequest:
    """
    Map tool arguments onto a request.

    Tenant ids, a rollout name or an explicit ``is_member=False`` make it a
    membership request and ``enabled`` is ignored; otherwise it is a toggle
    (enabled unless told otherwise). A membership request whose values are
    all blank is kept as such so that compiling it fails loudly.
    """
    if tenant_ids or rollout_name or is_member is False:
        return MembershipRequest(
            tenant_ids=tuple(tenant_ids or ()),
            rollout_name=rollout_name,
            is_member=is_member is not False,
        )
    return ToggleRequest(enabled=True if enabled is None else bool(enabled))
