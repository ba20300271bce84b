"""Core orchestration for nebulactl.

Contains the operation controller and the collaborators it sequences:
confirmation policy, state store, snapshot gate, hold cache, and history.
"""
