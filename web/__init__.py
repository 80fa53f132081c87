"""
HTTP service for the valuation engine.
"""
