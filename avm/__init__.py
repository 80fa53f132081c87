"""
Comparable-based valuation (AVM) engine.

Estimates a subject property's market value from a pool of comparable
transactions: geospatial candidate search, feature normalization,
similarity scoring and weighted aggregation with a confidence band.
"""

__version__ = "1.0.0"
