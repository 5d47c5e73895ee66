"""Install engine for manifest-based resource lifecycle.

Resolves each manifest resource to its API collection, creates missing
objects once (tagged with an owner reference), and deletes them in reverse
order when the installation is retracted.
"""
