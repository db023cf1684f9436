#!/usr/bin/env python3
"""
Run all tests for arxiv-coach.

Usage:
    python run_tests.py              # Run all tests
    python run_tests.py -v           # Verbose output
"""

import sys
import unittest


def run_tests(verbose=False, pattern="test_*.py"):
    """
    Discover and run the test suite.

    Args:
        verbose: If True, show verbose output
        pattern: Test file pattern (default: test_*.py)
    """
    loader = unittest.TestLoader()
    suite = loader.discover("tests", pattern=pattern)

    runner = unittest.TextTestRunner(verbosity=2 if verbose else 1)
    result = runner.run(suite)

    return 0 if result.wasSuccessful() else 1


if __name__ == "__main__":
    verbose = "-v" in sys.argv or "--verbose" in sys.argv
    sys.exit(run_tests(verbose=verbose))
