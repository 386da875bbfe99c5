"""
evowallet - HD wallet, UTXO store and asset lock transactions for Dash identity funding
"""

__version__ = "0.9.0"
