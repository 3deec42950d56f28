"""
Domain layer for the chat import feature.
"""
