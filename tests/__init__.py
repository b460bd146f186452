"""
Test suite for the psnbench benchmark driver.

This package contains:
- unit/: component tests with fakes and manual clocks
- integration/: full scenario runs against the in-memory backend
"""
