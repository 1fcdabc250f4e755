"""Predictable IP allocator (predip).

Keeps per-replica addresses of the DNS backend fleet stable:
 - sequential allocation from named address pools stored as versioned records
 - advisory exclusion of addresses held by sibling pools
 - a level-triggered reconciler that annotates fleet members with their address
 - release of addresses when members go away

Correctness relies on optimistic concurrency of the record store, never on locks.
"""
