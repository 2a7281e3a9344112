"""Data models for devflow.

- domain: payloads exchanged with the task source, code host, CI and test runner
- artifacts: generated artifacts and the fix plan union
- generation: requests, candidates and synthesis results
"""
