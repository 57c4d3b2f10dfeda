"""
Progress & reward accounting engine for the kids learning platform.
"""
