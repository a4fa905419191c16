"""
Contact import pipeline: parse -> classify -> reconcile -> execute.
"""
