"""
Utils Package

Retry and file helpers shared by the upload providers.
"""
