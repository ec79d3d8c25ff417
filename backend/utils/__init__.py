"""
Configuration and text utilities.
"""
