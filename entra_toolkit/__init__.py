"""Entra Admin Toolkit: interactive Microsoft Graph tools for risk posture and app registrations."""

__version__ = "1.0.0"
