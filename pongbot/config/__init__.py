"""
Configuration package.

Environment-driven settings loaded through python-dotenv.
"""

from pongbot.config.config import Settings

__all__ = ["Settings"]
