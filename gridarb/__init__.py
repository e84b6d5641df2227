"""
gridarb - interval-grid stop-loss arb engine.
"""

__version__ = "0.1.0"
