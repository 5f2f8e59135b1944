"""
Core capture, feature, matching, fusion and learning components
"""
