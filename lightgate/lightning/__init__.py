"""Lightning Network payment client.

Creates and tracks invoices, streams settlement notifications, pays BOLT-11
requests and opens channels against an LND node through its REST API.
"""
