"""
Data preparation utilities.
"""
