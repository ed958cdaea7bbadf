"""
Seasonal catalog synchronization.
Pages the upstream GraphQL catalog for a season bucket and diff-upserts
each title into the local store, then tracks airing titles to completion.
"""
