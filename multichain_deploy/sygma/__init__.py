"""Sygma bridge integration.

Domain registry lookup and transfer status polling against the Sygma indexer.
"""
