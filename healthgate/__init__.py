"""Authentication gating and health profile persistence.

This package decides which top-level screen state the application is in,
mediates biometric unlock, and persists the user's health profile.
Collaborators (identity provider, biometric platform, storage) are injected
through Protocols so the logic stays easy to test and reason about.
"""
