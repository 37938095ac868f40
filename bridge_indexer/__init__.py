"""
Bridge Indexer - L1/L2 bridge event indexing and withdrawal relaying.
"""

__version__ = "0.1.0"
