"""ClaimDesk — expense claim approval workflow API."""

__version__ = "1.0.0"
