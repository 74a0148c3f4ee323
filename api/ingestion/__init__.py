"""
CSV upload pipeline: decode, validate, and stage facility rows.
"""
