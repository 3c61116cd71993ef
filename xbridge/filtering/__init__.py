"""Two-step filtering.

- expressions: parsing ``filter`` parameters and evaluating predicates
- index: name-only collection indices with a bounded TTL cache
- engine: phase-1 name match, fetch-limit gate, phase-2 enrichment
"""
