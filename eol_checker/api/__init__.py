"""
API package initialization
"""
