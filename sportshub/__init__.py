"""
Sports Hub - cached API-Football proxy.
"""
__version__ = "0.3.0"
