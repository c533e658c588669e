"""EveLab Insight webhook receiver.

Receives skin-analysis callbacks (users, reports, report images, 3D models),
verifies the provider's MD5 signature and persists the payloads into the
document store keyed by the provider's ids.
"""

__version__ = "0.1.0"
