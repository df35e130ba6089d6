"""
Application services that combine components with the store.
"""
