"""
Data models for the interview engine.
"""
