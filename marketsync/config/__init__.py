"""
Configuration package.

Environment-driven settings loaded through python-dotenv.
"""

from marketsync.config.config import Settings

__all__ = [
    "Settings",
]
