"""
Configuration Package

Environment-driven settings (see settings.py).
"""
