"""Core Application Layer: Orchestrates use cases and application logic.

Contains the request execution engine, the mail and contacts/calendar
services built on it, and the command handler used by the CLI.
"""
