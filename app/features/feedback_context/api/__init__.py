"""
HTTP surface for the feedback context engine.
"""
