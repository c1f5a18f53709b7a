# Copyright (c) Syntropy Systems
"""
tempo - Performance test coordination.

Catalog scenarios, run them against baselines, catch regressions.
"""

__version__ = "0.3.0"
__all__ = ["__version__"]
