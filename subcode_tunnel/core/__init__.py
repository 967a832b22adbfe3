"""
Core tunnel lifecycle logic for subcode-tunnel.
"""
