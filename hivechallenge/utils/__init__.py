"""
Utilities for HiveChallenge.
"""
