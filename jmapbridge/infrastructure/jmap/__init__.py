"""JMAP wire encoding: batch building and response unpacking."""
