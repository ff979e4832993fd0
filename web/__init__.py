"""
SDCVault web frontends.
"""
