"""Ownership checks against the principal supplied by the external auth layer."""

from site_spine.errors import AuthorizationError


def is_owner(principal: str | None, owner_id: str | None) -> bool:
    return bool(principal) and principal == owner_id


def require_owner(principal: str | None, owner_id: str | None, resource: str, resource_id: str) -> None:
    """Raise AuthorizationError unless ``principal`` owns the resource."""
    if not is_owner(principal, owner_id):
        raise AuthorizationError(
            f"Not authorized to access {resource} {resource_id}",
            resource=resource,
            resource_id=resource_id,
        )
