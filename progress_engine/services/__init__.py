"""
Progress engine services.
"""
