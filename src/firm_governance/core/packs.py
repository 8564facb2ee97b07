"""Jurisdiction pack compatibility."""

from typing import Optional, Union

from firm_governance.common.exceptions import ValidationError
from firm_governance.core.types import AgentDomain, JurisdictionPack


def as_pack(value: Union[JurisdictionPack, str]) -> JurisdictionPack:
    """Coerce ``value`` to a JurisdictionPack.

    Raises:
        ValidationError: ``value`` names no known pack
    """
    if isinstance(value, JurisdictionPack):
        return value
    try:
        return JurisdictionPack(value)
    except ValueError as e:
        raise ValidationError(
            f"Unknown jurisdiction pack: {value}",
            details={"allowed": [p.value for p in JurisdictionPack]},
        ) from e


def check_pack_compatibility(
    item_pack: Union[JurisdictionPack, str],
    target_pack: Union[JurisdictionPack, str],
) -> bool:
    """Check whether an item bound to ``item_pack`` may be used in ``target_pack``.

    GLOBAL is compatible with every pack; any other pack is compatible
    only with itself. Both packs are validated first, so an unknown
    target is rejected even for a GLOBAL item.

    Args:
        item_pack: Pack the evidence item or template belongs to
        target_pack: Pack of the task it is being used for

    Returns:
        True if the item may be used

    Raises:
        ValidationError: Either pack is unknown
    """
    item = as_pack(item_pack)
    target = as_pack(target_pack)
    return item == JurisdictionPack.GLOBAL or item == target


def pack_jurisdiction(pack: Union[JurisdictionPack, str]) -> Optional[str]:
    """Jurisdiction prefix of a pack ("MT_TAX" -> "MT"); None for GLOBAL."""
    pack = as_pack(pack)
    if pack == JurisdictionPack.GLOBAL:
        return None
    return pack.value.split("_", 1)[0]


def check_agent_pack_permission(
    domain: Union[AgentDomain, str],
    pack: Union[JurisdictionPack, str],
) -> bool:
    """Check whether an agent working in ``domain`` may use ``pack``.

    GLOBAL agents may use every pack and every agent may use the GLOBAL
    pack. A jurisdiction agent is otherwise limited to its own packs.
    """
    domain = AgentDomain(domain)
    jurisdiction = pack_jurisdiction(pack)
    if domain == AgentDomain.GLOBAL or jurisdiction is None:
        return True
    return domain.value == jurisdiction
