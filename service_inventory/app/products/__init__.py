"""
Product domain: models, SQL, and the cache-aside repository.
"""
