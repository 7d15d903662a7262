"""Ordered Rollout Controller (ORC).

Small deployment orchestrator for the fullstack-app stack that:
 - builds one container image per service unit from its source tree
 - applies the manifest set to a Kubernetes cluster in dependency order
 - gates the stateless tiers on the database becoming ready (best effort)
 - verifies tooling, cluster reachability and deployed resources

Reconciliation itself (scheduling, restarts, load balancing) is left to the cluster.
"""
