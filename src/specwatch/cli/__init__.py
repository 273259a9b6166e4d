"""
Command-line interface for specwatch.
"""
