"""
Cache package for the Policy Engine Service.

Provides the result cache, which memoizes evaluation results and
applicable-policy lists with TTLs, and the backends it stores into:
an in-memory backend for single-process use and a Redis backend for
sharing across instances.
"""
