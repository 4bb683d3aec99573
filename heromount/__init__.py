"""Hero TV Mounting booking backend"""

__version__ = "1.0.0"
