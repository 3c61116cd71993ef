"""Aggregation — consolidating every source's model and capabilities.

- documents: key-wise merge of model and capabilities documents
- aggregator: refresh, snapshot swap and administrative changes
"""
