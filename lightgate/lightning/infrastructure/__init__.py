"""Infrastructure layer: LND REST gateway, wire models and the invoice stream."""
