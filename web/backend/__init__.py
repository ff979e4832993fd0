"""
Flask JSON API.
"""
