"""
End-to-end scenario tests.

Scenarios run with real worker threads and real time against the
in-memory backend, using the short intervals of the testing settings.
"""
