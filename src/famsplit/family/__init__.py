"""Family groups, membership and invitations."""

from .membership import MembershipManager, normalize_email

__all__ = ["MembershipManager", "normalize_email"]
