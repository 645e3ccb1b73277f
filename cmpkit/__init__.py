"""Build signed CMP requests and parse and verify CMP replies between a registration authority and a certificate authority."""

__version__ = "0.1.0"

__all__ = ["der", "pkix", "extensions", "protection", "messages", "requests", "responses"]