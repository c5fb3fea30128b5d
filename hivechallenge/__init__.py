"""
HiveChallenge: lifecycle manager for Hive game challenges.
"""

__version__ = "0.1.0"
