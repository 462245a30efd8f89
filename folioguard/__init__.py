"""folioguard: security middleware pipeline for the portfolio CMS."""

__version__ = "0.3.0"
