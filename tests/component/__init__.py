"""
Component tests for the shop web API.
"""
