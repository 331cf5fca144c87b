"""
SQL judge: runs learner SQL against disposable per-session SQLite sandboxes
and grades the result against an expected output.
"""
