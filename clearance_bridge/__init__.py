"""ClearanceBridge: keeps a Cloudflare clearance cookie fresh for a single upstream."""

__version__ = "0.1.0"
