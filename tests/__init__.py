"""
Tests for the oproxy relay client
"""
