"""
Core retry engine.
"""
