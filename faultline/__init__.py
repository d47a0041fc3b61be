"""
Faultline: application error and observability pipeline.
"""

__version__ = "0.1.0"
