"""City Lights residential-building platform client"""

__version__ = "1.0.0"
