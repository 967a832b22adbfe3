"""
CLI command implementations for subcode-tunnel.
"""
