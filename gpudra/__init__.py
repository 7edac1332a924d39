"""
GPU allocation controller package.

Modules:
- state: NodeAllocationState record, claims and parameter types
- locks: per-node lock registry
- staging: in-memory staged allocations between filter and commit
- allocator: greedy GPU assignment for a batch of claims
- client: NodeAllocationState get/create/update/delete via the Kubernetes API
- driver: filter (unsuitable nodes), commit (allocate) and release (deallocate)
- params: claim/class parameter lookup and validation
- api: REST surface for the scheduling authority
"""
