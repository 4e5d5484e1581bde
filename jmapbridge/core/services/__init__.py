"""Application services that translate domain requests into JMAP batches."""
