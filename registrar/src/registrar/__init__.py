"""
registrar - Asset lock funding and Dash identity registration
"""

__version__ = "0.9.0"
