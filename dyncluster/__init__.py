"""
dyncluster - ephemeral database clusters for testing
"""
__version__ = "0.1.0"
