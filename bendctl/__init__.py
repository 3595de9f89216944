"""
bendctl — manage locally installed databend releases.
"""

__version__ = "0.1.0"
