# backend/visitlog/constants.py

"""
Global constants used across modules, including the User-Agent string sent
with every outbound HTTP request.
"""

USER_AGENT = "visitlog/1.0 (+https://github.com/visitlog/visitlog)"

# Literal used when no request header or socket peer yields an address.
UNKNOWN_ADDRESS = "unknown"
