"""EveLab Insight webhook inbound system.

Receives user, report, report image and report 3D callbacks. Each callback is
signature-verified, freshness-checked, mapped and persisted.
"""
