"""
                Restaurant Order Flow

Order lifecycle engine for a restaurant ordering platform: status state
machine, payment reconciliation, delivery assignment, and the kitchen and
customer projections derived from the live order set.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
