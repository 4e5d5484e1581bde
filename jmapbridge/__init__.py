"""jmapbridge: request execution engine for JMAP mail, contacts and calendars."""

__version__ = "0.1.0"
