"""Users module — User model, lookups and the claim-limit view."""

from claimdesk.users.models import User

__all__ = ["User"]
