"""
Target registry.
"""

from specwatch.registry.registry import StaticTargetRegistry, TargetRegistry

__all__ = ["StaticTargetRegistry", "TargetRegistry"]
