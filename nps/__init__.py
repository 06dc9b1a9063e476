"""
NPS - node package scanner
"""

__version__ = "0.1.0"
