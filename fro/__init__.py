"""FreshRSS Reconciler (FRO).

Declarative operator core that keeps a FreshRSS deployment converged:
 - synthesizes the Deployment, Service and Route a FreshRSS resource needs
 - merges them non-destructively into live state, one change per pass
 - links every managed object to its FreshRSS for cascading deletion
 - reflects the admitted route host back onto ``status.url``

The implementation is intentionally small so it can be audited and explained.
"""
