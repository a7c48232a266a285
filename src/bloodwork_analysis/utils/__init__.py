"""
Utility modules for the bloodwork analysis engine.
"""
