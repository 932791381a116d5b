"""
SHOP - Property-Based Testing Suite

Hypothesis properties for command validation, the commit pipeline and
read model projections.
"""
