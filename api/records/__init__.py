"""
Records module - the site's asset-backed entities (publications, displays,
portraits and section covers) and the commit, delete and reorder flows
that keep them in sync with the asset store.
"""
