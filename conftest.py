"""
Pytest configuration.
Switches the app to its testing settings before anything imports it.
"""
import os

# Set testing environment before importing app
os.environ["TESTING"] = "True"
os.environ["DEBUG"] = "False"
os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-bytes-for-hs256")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_dummy")
