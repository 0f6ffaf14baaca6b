"""REST API surface for Voice UPI."""
