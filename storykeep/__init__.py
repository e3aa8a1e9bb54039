"""
storykeep - local draft reconciliation and cached admin settings for the storytelling platform.
"""

from .core.config import VERSION

__version__ = VERSION
