"""
Pneuma - Node interaction layer for Prosopon.

Provides the correlating JSON-RPC client, the transaction builder, the
personal-namespace client, and the signing orchestrator.

Uses httpx + eth-account instead of the heavyweight web3.py.
"""
